"""On-disk structures of the database file and raw page access."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from os import PathLike
from typing import BinaryIO, Union

from .errors import CorruptError, InvalidDatabaseError

PathType = Union[str, "PathLike[str]"]

MAGIC = 0xED0CDACD
PAGE_HEADER_SIZE = 16
BUCKET_LEAF_FLAG = 0x01

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_META = struct.Struct("<IIIIQQQQQQ")
_BUCKET = struct.Struct("<QQ")
_BRANCH = struct.Struct("<IIQ")

META_SIZE = _META.size
BUCKET_HEADER_SIZE = _BUCKET.size
LEAF_ELEMENT_SIZE = _U64.size
BRANCH_ELEMENT_SIZE = _BRANCH.size

_OVERFLOW_COUNT = 0xFFFF
_FIRST_CHUNK = 4096

_ID_OFFSET = 0
_FLAGS_OFFSET = 8
_COUNT_OFFSET = 10
_OVERFLOW_OFFSET = 12


class PageType(enum.IntFlag):
    """Flags stored in a page header."""

    BRANCH = 0x01
    LEAF = 0x02
    META = 0x04
    FREELIST = 0x10


@dataclass
class BucketHeader:
    """The fixed header stored as the value of a bucket entry."""

    root: int = 0
    sequence: int = 0

    @classmethod
    def from_bytes(cls, buf: bytes | bytearray | memoryview) -> "BucketHeader":
        if len(buf) < BUCKET_HEADER_SIZE:
            raise ValueError("buffer too small for a bucket header")
        root, sequence = _BUCKET.unpack_from(buf, 0)
        return cls(root=root, sequence=sequence)

    def inline_page(self, value: bytes | bytearray) -> "Page":
        """Return the page stored inline after the header in a bucket value."""
        return Page(value[BUCKET_HEADER_SIZE:])

    def __str__(self) -> str:
        return f"<pgid={self.root},seq={self.sequence}>"


@dataclass
class Meta:
    """Contents of a meta page."""

    magic: int = MAGIC
    version: int = 0
    page_size: int = 0
    flags: int = 0
    root: BucketHeader = field(default_factory=BucketHeader)
    freelist: int = 0
    pgid: int = 0
    txid: int = 0
    checksum: int = 0

    @classmethod
    def from_bytes(cls, buf: bytes | bytearray | memoryview, offset: int = 0) -> "Meta":
        if offset < 0 or len(buf) - offset < META_SIZE:
            raise ValueError("buffer too small for a meta page")
        (magic, version, page_size, flags, root, sequence,
         freelist, pgid, txid, checksum) = _META.unpack_from(buf, offset)
        return cls(
            magic=magic,
            version=version,
            page_size=page_size,
            flags=flags,
            root=BucketHeader(root=root, sequence=sequence),
            freelist=freelist,
            pgid=pgid,
            txid=txid,
            checksum=checksum,
        )

    def to_bytes(self) -> bytes:
        return _META.pack(
            self.magic,
            self.version,
            self.page_size,
            self.flags,
            self.root.root,
            self.root.sequence,
            self.freelist,
            self.pgid,
            self.txid,
            self.checksum,
        )

    def describe(self) -> str:
        """Return a human-readable summary of the meta page."""
        return (
            f"Version:    {self.version}\n"
            f"Page Size:  {self.page_size} bytes\n"
            f"Flags:      {self.flags:08x}\n"
            f"Root:       <pgid={self.root.root}>\n"
            f"Freelist:   <pgid={self.freelist}>\n"
            f"HWM:        <pgid={self.pgid}>\n"
            f"Txn ID:     {self.txid}\n"
            f"Checksum:   {self.checksum:016x}\n"
            "\n"
        )


@dataclass(frozen=True)
class LeafElement:
    """A decoded leaf element: key, value and flags."""

    offset: int
    flags: int
    pos: int
    ksize: int
    vsize: int
    key: bytes
    value: bytes

    @property
    def is_bucket_entry(self) -> bool:
        return bool(self.flags & BUCKET_LEAF_FLAG)

    @property
    def key_offset(self) -> int:
        """Offset of the key within the page buffer."""
        return self.offset + self.pos

    def bucket(self) -> BucketHeader | None:
        if self.is_bucket_entry:
            return BucketHeader.from_bytes(self.value)
        return None


@dataclass(frozen=True)
class BranchElement:
    """A decoded branch element: separator key and child page id."""

    offset: int
    pos: int
    ksize: int
    pgid: int
    key: bytes


class Page:
    """A page held in a mutable buffer; header fields are read and written in place."""

    __slots__ = ("data",)

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self.data = data if isinstance(data, bytearray) else bytearray(data)
        if len(self.data) < PAGE_HEADER_SIZE:
            raise ValueError("buffer too small for a page header")

    @property
    def id(self) -> int:
        return _U64.unpack_from(self.data, _ID_OFFSET)[0]

    @id.setter
    def id(self, value: int) -> None:
        _U64.pack_into(self.data, _ID_OFFSET, value)

    @property
    def flags(self) -> int:
        return _U16.unpack_from(self.data, _FLAGS_OFFSET)[0]

    @flags.setter
    def flags(self, value: int) -> None:
        _U16.pack_into(self.data, _FLAGS_OFFSET, int(value))

    @property
    def count(self) -> int:
        return _U16.unpack_from(self.data, _COUNT_OFFSET)[0]

    @count.setter
    def count(self, value: int) -> None:
        _U16.pack_into(self.data, _COUNT_OFFSET, value)

    @property
    def overflow(self) -> int:
        return _U32.unpack_from(self.data, _OVERFLOW_OFFSET)[0]

    @overflow.setter
    def overflow(self, value: int) -> None:
        _U32.pack_into(self.data, _OVERFLOW_OFFSET, value)

    @property
    def type(self) -> str:
        flags = self.flags
        for kind in (PageType.BRANCH, PageType.LEAF, PageType.META, PageType.FREELIST):
            if flags & kind:
                return kind.name.lower()
        return f"unknown<{flags:02x}>"

    def __str__(self) -> str:
        return (
            f"ID: {self.id}, Type: {self.type}, "
            f"count: {self.count}, overflow: {self.overflow}"
        )

    def __repr__(self) -> str:
        return f"Page({self})"

    def _require(self, start: int, length: int) -> None:
        if start < 0 or start + length > len(self.data):
            raise CorruptError(
                f"page {self.id}: range {start}..{start + length} outside buffer of {len(self.data)} bytes"
            )

    def leaf_element(self, index: int) -> LeafElement:
        if index < 0:
            raise IndexError(index)
        offset = PAGE_HEADER_SIZE + index * LEAF_ELEMENT_SIZE
        if offset + LEAF_ELEMENT_SIZE > len(self.data):
            raise IndexError(index)
        (raw,) = _U64.unpack_from(self.data, offset)
        flags = raw >> 63
        pos = (raw >> 37) & 0x3FFFFFF
        ksize = (raw >> 24) & 0x1FFF
        vsize = raw & 0xFFFFFF
        start = offset + pos
        self._require(start, ksize + vsize)
        return LeafElement(
            offset=offset,
            flags=flags,
            pos=pos,
            ksize=ksize,
            vsize=vsize,
            key=bytes(self.data[start:start + ksize]),
            value=bytes(self.data[start + ksize:start + ksize + vsize]),
        )

    def branch_element(self, index: int) -> BranchElement:
        if index < 0:
            raise IndexError(index)
        offset = PAGE_HEADER_SIZE + index * BRANCH_ELEMENT_SIZE
        if offset + BRANCH_ELEMENT_SIZE > len(self.data):
            raise IndexError(index)
        pos, ksize, pgid = _BRANCH.unpack_from(self.data, offset)
        start = offset + pos
        self._require(start, ksize)
        return BranchElement(
            offset=offset,
            pos=pos,
            ksize=ksize,
            pgid=pgid,
            key=bytes(self.data[start:start + ksize]),
        )

    def freelist_count(self) -> int:
        """Number of page ids on a freelist page, honouring the overflow marker."""
        if self.count == _OVERFLOW_COUNT:
            self._require(PAGE_HEADER_SIZE, _U64.size)
            return _U64.unpack_from(self.data, PAGE_HEADER_SIZE)[0]
        return self.count

    def freelist_ids(self) -> list[int]:
        start = PAGE_HEADER_SIZE
        if self.count == _OVERFLOW_COUNT:
            start += _U64.size
        n = self.freelist_count()
        self._require(start, n * _U64.size)
        return list(struct.unpack_from(f"<{n}Q", self.data, start))

    def meta(self) -> Meta:
        return Meta.from_bytes(self.data, PAGE_HEADER_SIZE)


def new_page(size: int, pgid: int, flags: int = 0, overflow: int = 0) -> Page:
    """Create a zeroed page buffer of ``size`` bytes with its header filled in."""
    if size < PAGE_HEADER_SIZE:
        raise ValueError(f"page size {size} smaller than the page header")
    page = Page(bytearray(size))
    page.id = pgid
    page.flags = flags
    page.overflow = overflow
    return page


def _read_at(fh: BinaryIO, offset: int, size: int) -> bytes:
    fh.seek(offset)
    data = fh.read(size)
    if len(data) != size:
        raise EOFError("unexpected EOF")
    return data


def read_page_size_and_hwm(path: PathType) -> tuple[int, int]:
    """Return the page size and high water mark recorded in the first meta page."""
    with open(path, "rb") as fh:
        buf = fh.read(_FIRST_CHUNK)
    if len(buf) < _FIRST_CHUNK:
        raise EOFError("unexpected EOF")
    meta = Meta.from_bytes(buf, PAGE_HEADER_SIZE)
    if meta.magic != MAGIC:
        raise InvalidDatabaseError("the meta page has wrong (unexpected) magic")
    return meta.page_size, meta.pgid


def read_page(path: PathType, page_id: int) -> Page:
    """Read a page and its overflow pages. Not transactionally safe."""
    page_size, hwm = read_page_size_and_hwm(path)
    if page_size < PAGE_HEADER_SIZE:
        raise CorruptError(f"error: invalid value, page size {page_size} is too small")
    offset = page_id * page_size
    with open(path, "rb") as fh:
        page = Page(_read_at(fh, offset, page_size))
        if page.id != page_id:
            raise CorruptError(
                f"error: invalid value due to unexpected page id: {page.id} != {page_id}"
            )
        overflow = page.overflow
        if overflow >= ((hwm & 0xFFFFFFFF) - 3) & 0xFFFFFFFF:
            raise CorruptError(
                f"error: invalid value, page claims to have {overflow} overflow pages "
                f"(>=hwm={hwm}). Interrupting to avoid risky OOM"
            )
        page = Page(_read_at(fh, offset, (overflow + 1) * page_size))
    if page.id != page_id:
        raise CorruptError(
            f"error: invalid value due to unexpected page id: {page.id} != {page_id}"
        )
    return page


def write_page(path: PathType, page: Page) -> None:
    """Write a page (with its overflow) back at the position given by its id."""
    page_size, _ = read_page_size_and_hwm(path)
    expected = page_size * (page.overflow + 1)
    if expected != len(page.data):
        raise ValueError(
            f"write_page: len(buf):{len(page.data)} != page_size*(overflow+1):{expected}"
        )
    with open(path, "r+b") as fh:
        fh.seek(page.id * page_size)
        fh.write(page.data)


def get_root_page(path: PathType) -> tuple[int, int]:
    """Return the root page id and the index of the active meta page."""
    meta0 = read_page(path, 0).meta()
    meta1 = read_page(path, 1).meta()
    if meta0.txid < meta1.txid:
        return meta1.root.root, 1
    return meta0.root.root, 0