"""Meta page handling, initial file layout and page size detection."""

from __future__ import annotations

from typing import BinaryIO

from .errors import ChecksumError, InvalidDatabaseError, VersionMismatchError
from .layout import (
    MAGIC,
    META_SIZE,
    PAGE_HEADER_SIZE,
    BucketHeader,
    Meta,
    Page,
    PageType,
    new_page,
)

VERSION = 2
"""Data file format version."""

MAX_MMAP_STEP = 1 << 30
"""Largest step taken when growing the mapping (1GB)."""

MAX_MAP_SIZE = 0xFFFFFFFFFFFF
"""Largest mapping the database may grow to."""

FREELIST_MAX_SIZE = 1 * 1024 * 1024
FREELIST_REGION_SIZE = 8 * FREELIST_MAX_SIZE

_PROBE_SIZE = 0x1000
_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_U64_MASK = 0xFFFFFFFFFFFFFFFF


def _fnv64a(data: bytes) -> int:
    h = _FNV64_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _U64_MASK
    return h


def checksum(meta: Meta) -> int:
    """FNV-1a 64-bit hash of every meta field that precedes the checksum."""
    return _fnv64a(meta.to_bytes()[:META_SIZE - 8])


def validate_meta(meta: Meta) -> None:
    """Raise if the meta's marker, version or checksum is wrong."""
    if meta.magic != MAGIC:
        raise InvalidDatabaseError()
    if meta.version != VERSION:
        raise VersionMismatchError()
    if meta.checksum != checksum(meta):
        raise ChecksumError()


def _is_valid(meta: Meta) -> bool:
    try:
        validate_meta(meta)
    except (InvalidDatabaseError, VersionMismatchError, ChecksumError):
        return False
    return True


def write_meta(meta: Meta, page: Page) -> None:
    """Seal ``meta`` with a fresh checksum and store it on ``page``."""
    if meta.root.root >= meta.pgid:
        raise ValueError(
            f"root bucket pgid ({meta.root.root}) above high water mark ({meta.pgid})"
        )
    if len(page.data) < PAGE_HEADER_SIZE + META_SIZE:
        raise ValueError("page too small to hold a meta")
    # The meta page is 0 or 1, chosen by the transaction id.
    page.id = meta.txid % 2
    page.flags = page.flags | PageType.META
    meta.checksum = checksum(meta)
    page.data[PAGE_HEADER_SIZE:PAGE_HEADER_SIZE + META_SIZE] = meta.to_bytes()


def active_meta(meta0: Meta, meta1: Meta) -> Meta:
    """Return the valid meta with the highest transaction id."""
    first, second = meta0, meta1
    if meta1.txid > meta0.txid:
        first, second = meta1, meta0
    if _is_valid(first):
        return first
    if _is_valid(second):
        return second
    raise InvalidDatabaseError("invalid meta pages")


def mmap_size(size: int, page_size: int) -> int:
    """Mapping size for a database of ``size`` bytes.

    Doubles from 32KB up to 1GB, then grows in 1GB steps, always a multiple of
    the page size and never above the maximum mapping size.
    """
    for shift in range(15, 31):
        if size <= 1 << shift:
            return 1 << shift

    if size > MAX_MAP_SIZE:
        raise ValueError("mmap too large")

    sz = size
    remainder = sz % MAX_MMAP_STEP
    if remainder > 0:
        sz += MAX_MMAP_STEP - remainder

    if sz % page_size != 0:
        sz = (sz // page_size + 1) * page_size

    return min(sz, MAX_MAP_SIZE)


def initial_layout(page_size: int) -> bytearray:
    """Contents of a new database file.

    Two meta pages, two empty freelist regions and an empty root leaf page.
    """
    region_pages = FREELIST_REGION_SIZE // page_size
    root = 2 + FREELIST_REGION_SIZE * 2 // page_size
    buf = bytearray(page_size * 2 + FREELIST_REGION_SIZE * 2 + page_size)

    def place(page: Page) -> None:
        offset = page.id * page_size
        buf[offset:offset + page_size] = page.data

    for txid in range(2):
        page = new_page(page_size, txid, PageType.META)
        meta = Meta(
            magic=MAGIC,
            version=VERSION,
            page_size=page_size,
            freelist=0,
            root=BucketHeader(root=root),
            pgid=root + 1,
            txid=txid,
        )
        meta.checksum = checksum(meta)
        page.data[PAGE_HEADER_SIZE:PAGE_HEADER_SIZE + META_SIZE] = meta.to_bytes()
        place(page)

    for pgid in (2, 2 + region_pages):
        place(new_page(page_size, pgid, PageType.FREELIST, region_pages - 1))

    place(new_page(page_size, root, PageType.LEAF))
    return buf


def freelist_page_id(meta: Meta, page_size: int) -> int:
    """First page of the freelist region the meta points at."""
    return 2 + (meta.freelist % 2) * FREELIST_REGION_SIZE // page_size


def _meta_page_size(buf: bytes) -> int | None:
    meta = Meta.from_bytes(buf, PAGE_HEADER_SIZE)
    return meta.page_size if _is_valid(meta) else None


def page_size_from_first_meta(fh: BinaryIO) -> tuple[int | None, bool]:
    """Return (page size or None, whether the first meta page could be read)."""
    fh.seek(0)
    buf = fh.read(_PROBE_SIZE)
    if len(buf) != _PROBE_SIZE:
        return None, False
    return _meta_page_size(buf), True


def page_size_from_second_meta(fh: BinaryIO, file_size: int) -> tuple[int | None, bool]:
    """Probe each power-of-two offset from 1KB to 16MB for the second meta page.

    Returns (page size or None, whether any candidate page could be read).
    """
    can_read = False
    for shift in range(15):
        pos = 1024 << shift
        if pos >= file_size - 1024:
            break
        fh.seek(pos)
        data = fh.read(_PROBE_SIZE)
        if len(data) == _PROBE_SIZE or len(data) == file_size - pos:
            can_read = True
            found = _meta_page_size(data.ljust(_PROBE_SIZE, b"\x00"))
            if found is not None:
                return found, True
    return None, can_read


def detect_page_size(fh: BinaryIO, file_size: int, default_page_size: int) -> int:
    """Page size recorded in an existing file.

    Falls back to ``default_page_size`` when neither meta page validates but at
    least one of them could be read.
    """
    size, first_readable = page_size_from_first_meta(fh)
    if size is not None:
        return size
    size, second_readable = page_size_from_second_meta(fh, file_size)
    if size is not None:
        return size
    if first_readable or second_readable:
        return default_page_size
    raise InvalidDatabaseError()