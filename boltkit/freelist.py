"""Tracking of free and pending pages, with array and hashmap backends."""

from __future__ import annotations

import abc
import enum
import heapq
import struct
from dataclasses import dataclass, field
from typing import Iterable

from .errors import CorruptError
from .layout import PAGE_HEADER_SIZE, Page, PageType

_PGID_SIZE = 8
_OVERFLOW_COUNT = 0xFFFF


class FreelistType(str, enum.Enum):
    """Backend used to keep the free page ids."""

    ARRAY = "array"
    HASHMAP = "hashmap"


@dataclass
class TxPending:
    """Pages freed by one transaction, with the transactions that allocated them."""

    ids: list[int] = field(default_factory=list)
    alloctx: list[int] = field(default_factory=list)
    last_release_begin: int = 0


class Freelist(abc.ABC):
    """All pages available for allocation, plus pages still held by open transactions."""

    freelist_type: FreelistType

    def __init__(self) -> None:
        self.allocs: dict[int, int] = {}
        self.pending: dict[int, TxPending] = {}
        self.cache: set[int] = set()

    # Backend-specific operations.

    @abc.abstractmethod
    def free_count(self) -> int:
        """Number of free (not pending) pages."""

    @abc.abstractmethod
    def allocate(self, txid: int, n: int) -> int:
        """Return the first id of ``n`` contiguous free pages, or 0 if none fit."""

    @abc.abstractmethod
    def free_page_ids(self) -> list[int]:
        """Sorted list of free page ids."""

    @abc.abstractmethod
    def read_ids(self, ids: Iterable[int]) -> None:
        """Replace the free pages with the given sorted ids."""

    @abc.abstractmethod
    def merge_spans(self, ids: Iterable[int]) -> None:
        """Add page ids to the free pages."""

    # Shared behaviour.

    def size(self) -> int:
        """Size in bytes of the serialized freelist page."""
        n = self.count()
        if n >= _OVERFLOW_COUNT:
            n += 1
        return PAGE_HEADER_SIZE + _PGID_SIZE * n

    def count(self) -> int:
        return self.free_count() + self.pending_count()

    def pending_count(self) -> int:
        return sum(len(txp.ids) for txp in self.pending.values())

    def copyall(self) -> list[int]:
        """All free and pending ids in one sorted list."""
        pending = sorted(pid for txp in self.pending.values() for pid in txp.ids)
        return list(heapq.merge(self.free_page_ids(), pending))

    def free(self, txid: int, page: Page) -> None:
        """Mark a page and its overflow pages as freed by ``txid``."""
        if page.id <= 1:
            raise ValueError(f"cannot free page 0 or 1: {page.id}")
        txp = self.pending.setdefault(txid, TxPending())
        alloc_txid = self.allocs.pop(page.id, None)
        if alloc_txid is None:
            # A freelist page is always allocated by the previous transaction.
            alloc_txid = txid - 1 if page.flags & PageType.FREELIST else 0

        for pid in range(page.id, page.id + page.overflow + 1):
            if pid in self.cache:
                raise CorruptError(f"page {pid} already freed")
            txp.ids.append(pid)
            txp.alloctx.append(alloc_txid)
            self.cache.add(pid)

    def release(self, txid: int) -> None:
        """Move the pending pages of ``txid`` and older transactions to the free list."""
        released: list[int] = []
        for tid in [tid for tid in self.pending if tid <= txid]:
            released.extend(self.pending.pop(tid).ids)
        self.merge_spans(released)

    def release_range(self, begin: int, end: int) -> None:
        """Free pending pages both allocated and freed within ``[begin, end]``."""
        if begin > end:
            return
        released: list[int] = []
        for tid in list(self.pending):
            if tid < begin or tid > end:
                continue
            txp = self.pending[tid]
            if txp.last_release_begin == begin:
                continue
            kept_ids: list[int] = []
            kept_alloc: list[int] = []
            for pid, atx in zip(txp.ids, txp.alloctx):
                if begin <= atx <= end:
                    released.append(pid)
                else:
                    kept_ids.append(pid)
                    kept_alloc.append(atx)
            txp.ids = kept_ids
            txp.alloctx = kept_alloc
            txp.last_release_begin = begin
            if not txp.ids:
                del self.pending[tid]
        self.merge_spans(released)

    def rollback(self, txid: int) -> None:
        """Undo the frees made by ``txid``."""
        txp = self.pending.get(txid)
        if txp is None:
            return
        released: list[int] = []
        for pid, atx in zip(txp.ids, txp.alloctx):
            self.cache.discard(pid)
            if atx == 0:
                continue
            if atx != txid:
                self.allocs[pid] = atx
            else:
                released.append(pid)
        del self.pending[txid]
        self.merge_spans(released)

    def freed(self, pgid: int) -> bool:
        return pgid in self.cache

    def read(self, page: Page) -> None:
        """Initialize the free list from a freelist page."""
        if not page.flags & PageType.FREELIST:
            raise CorruptError(
                f"invalid freelist page: {page.id}, page type is {page.type}"
            )
        self.read_ids(sorted(page.freelist_ids()))

    def write(self, page: Page) -> None:
        """Write every free and pending id onto a freelist page."""
        page.flags = page.flags | PageType.FREELIST
        ids = self.copyall()
        n = len(ids)
        needed = self.size()
        if len(page.data) < needed:
            raise ValueError(
                f"freelist needs {needed} bytes, page holds {len(page.data)}"
            )
        if n == 0:
            page.count = 0
            return
        offset = PAGE_HEADER_SIZE
        if n < _OVERFLOW_COUNT:
            page.count = n
        else:
            page.count = _OVERFLOW_COUNT
            struct.pack_into("<Q", page.data, offset, n)
            offset += _PGID_SIZE
        struct.pack_into(f"<{n}Q", page.data, offset, *ids)

    def _pending_ids(self) -> set[int]:
        return {pid for txp in self.pending.values() for pid in txp.ids}

    def reload(self, page: Page) -> None:
        """Read a freelist page, leaving out ids that are still pending."""
        self.read(page)
        pending = self._pending_ids()
        self.read_ids([pid for pid in self.free_page_ids() if pid not in pending])

    def no_sync_reload(self, pgids: Iterable[int]) -> None:
        """Set the free list from ``pgids``, leaving out ids that are still pending."""
        pending = self._pending_ids()
        self.read_ids([pid for pid in pgids if pid not in pending])

    def reindex(self) -> None:
        """Rebuild the cache of free and pending ids."""
        self.cache = set(self.free_page_ids())
        self.cache.update(self._pending_ids())


class ArrayFreelist(Freelist):
    """Free ids kept as one sorted list; allocation returns the lowest fit."""

    freelist_type = FreelistType.ARRAY

    def __init__(self) -> None:
        super().__init__()
        self.ids: list[int] = []

    def free_count(self) -> int:
        return len(self.ids)

    def allocate(self, txid: int, n: int) -> int:
        initial = previd = 0
        for i, pid in enumerate(self.ids):
            if pid <= 1:
                raise CorruptError(f"invalid page allocation: {pid}")
            if previd == 0 or pid - previd != 1:
                initial = pid
            if pid - initial + 1 == n:
                del self.ids[i - n + 1:i + 1]
                for taken in range(initial, initial + n):
                    self.cache.discard(taken)
                self.allocs[initial] = txid
                return initial
            previd = pid
        return 0

    def free_page_ids(self) -> list[int]:
        return list(self.ids)

    def read_ids(self, ids: Iterable[int]) -> None:
        self.ids = list(ids)
        self.reindex()

    def merge_spans(self, ids: Iterable[int]) -> None:
        self.ids = list(heapq.merge(self.ids, sorted(ids)))


class HashmapFreelist(Freelist):
    """Free ids kept as spans of contiguous pages indexed by start, end and size."""

    freelist_type = FreelistType.HASHMAP

    def __init__(self) -> None:
        super().__init__()
        self.freemaps: dict[int, set[int]] = {}
        self.forward_map: dict[int, int] = {}
        self.backward_map: dict[int, int] = {}

    def free_count(self) -> int:
        return sum(self.forward_map.values())

    def _take(self, pid: int, size: int, n: int, txid: int) -> int:
        self._del_span(pid, size)
        self.allocs[pid] = txid
        if size > n:
            self._add_span(pid + n, size - n)
        for taken in range(pid, pid + n):
            self.cache.discard(taken)
        return pid

    def allocate(self, txid: int, n: int) -> int:
        if n == 0:
            return 0
        exact = self.freemaps.get(n)
        if exact:
            return self._take(min(exact), n, n, txid)
        for size in sorted(self.freemaps):
            if size < n:
                continue
            return self._take(min(self.freemaps[size]), size, n, txid)
        return 0

    def free_page_ids(self) -> list[int]:
        return sorted(
            pid
            for start, size in self.forward_map.items()
            for pid in range(start, start + size)
        )

    def read_ids(self, ids: Iterable[int]) -> None:
        self._init_spans(list(ids))
        self.reindex()

    def merge_spans(self, ids: Iterable[int]) -> None:
        for pid in ids:
            self.merge_with_existing_span(pid)

    def merge_with_existing_span(self, pid: int) -> None:
        """Add one page, joining it with the spans right before and after it."""
        prev, nxt = pid - 1, pid + 1
        new_start, new_size = pid, 1

        prev_size = self.backward_map.get(prev)
        if prev_size is not None:
            self._del_span(prev + 1 - prev_size, prev_size)
            new_start -= prev_size
            new_size += prev_size

        next_size = self.forward_map.get(nxt)
        if next_size is not None:
            self._del_span(nxt, next_size)
            new_size += next_size

        self._add_span(new_start, new_size)

    def _add_span(self, start: int, size: int) -> None:
        self.backward_map[start - 1 + size] = size
        self.forward_map[start] = size
        self.freemaps.setdefault(size, set()).add(start)

    def _del_span(self, start: int, size: int) -> None:
        self.forward_map.pop(start, None)
        self.backward_map.pop(start + size - 1, None)
        starts = self.freemaps.get(size)
        if starts is not None:
            starts.discard(start)
            if not starts:
                del self.freemaps[size]

    def _init_spans(self, pgids: list[int]) -> None:
        if any(a > b for a, b in zip(pgids, pgids[1:])):
            raise ValueError("pgids not sorted")
        self.freemaps = {}
        self.forward_map = {}
        self.backward_map = {}
        if not pgids:
            return
        start, size = pgids[0], 1
        for prev, cur in zip(pgids, pgids[1:]):
            if cur == prev + 1:
                size += 1
            else:
                self._add_span(start, size)
                start, size = cur, 1
        if start != 0:
            self._add_span(start, size)


def new_freelist(freelist_type: FreelistType | str = FreelistType.ARRAY) -> Freelist:
    """Return an empty freelist of the requested type (array unless hashmap)."""
    if FreelistType(freelist_type) is FreelistType.HASHMAP:
        return HashmapFreelist()
    return ArrayFreelist()