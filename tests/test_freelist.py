import struct

import pytest

from boltkit.errors import CorruptError
from boltkit.freelist import (
    ArrayFreelist,
    FreelistType,
    HashmapFreelist,
    TxPending,
    new_freelist,
)
from boltkit.layout import PAGE_HEADER_SIZE, PageType, new_page

BOTH = [FreelistType.ARRAY, FreelistType.HASHMAP]


def make_page(pgid, overflow=0, flags=0):
    return new_page(PAGE_HEADER_SIZE, pgid, flags, overflow)


def test_new_freelist_types():
    assert isinstance(new_freelist("array"), ArrayFreelist)
    assert isinstance(new_freelist(FreelistType.HASHMAP), HashmapFreelist)
    assert new_freelist().freelist_type is FreelistType.ARRAY


@pytest.mark.parametrize("kind", BOTH)
def test_free(kind):
    f = new_freelist(kind)
    f.free(100, make_page(12))
    assert f.pending[100].ids == [12]


@pytest.mark.parametrize("kind", BOTH)
def test_free_overflow(kind):
    f = new_freelist(kind)
    f.free(100, make_page(12, overflow=3))
    assert f.pending[100].ids == [12, 13, 14, 15]


@pytest.mark.parametrize("kind", BOTH)
def test_free_rejects_meta_pages_and_double_free(kind):
    f = new_freelist(kind)
    with pytest.raises(ValueError):
        f.free(100, make_page(1))
    f.free(100, make_page(5))
    with pytest.raises(CorruptError):
        f.free(101, make_page(5))


@pytest.mark.parametrize("kind", BOTH)
def test_release(kind):
    f = new_freelist(kind)
    f.free(100, make_page(12, overflow=1))
    f.free(100, make_page(9))
    f.free(102, make_page(39))
    f.release(100)
    f.release(101)
    assert f.free_page_ids() == [9, 12, 13]
    f.release(102)
    assert f.free_page_ids() == [9, 12, 13, 39]


RELEASE_RANGE_CASES = [
    ("single pending in range", [(3, 1, 100, 200)], [(1, 300)], [3]),
    ("minimum end range", [(3, 1, 100, 200)], [(1, 200)], [3]),
    ("outside minimum end range", [(3, 1, 100, 200)], [(1, 199)], []),
    ("minimum begin range", [(3, 1, 100, 200)], [(100, 300)], [3]),
    ("outside minimum begin range", [(3, 1, 100, 200)], [(101, 300)], []),
    ("in minimum range", [(3, 1, 199, 200)], [(199, 200)], [3]),
    ("read transaction at 199", [(3, 1, 199, 200)], [(100, 198), (200, 300)], []),
    (
        "adjacent pending and read transactions at 199, 200",
        [(3, 1, 199, 200), (4, 1, 200, 201)],
        [(100, 198), (200, 199), (201, 300)],
        [],
    ),
    (
        "out of order ranges",
        [(3, 1, 199, 200), (4, 1, 200, 201)],
        [(201, 199), (201, 200), (200, 200)],
        [],
    ),
    (
        "multiple pending, read transaction at 150",
        [
            (3, 1, 100, 200),
            (4, 1, 100, 125),
            (5, 1, 125, 150),
            (6, 1, 125, 175),
            (7, 2, 150, 175),
            (9, 2, 175, 200),
        ],
        [(50, 149), (151, 300)],
        [4, 9, 10],
    ),
]


@pytest.mark.parametrize("kind", BOTH)
@pytest.mark.parametrize("title,pages,ranges,want", RELEASE_RANGE_CASES)
def test_release_range(kind, title, pages, ranges, want):
    f = new_freelist(kind)
    ids = [pid + i for pid, n, _, _ in pages for i in range(n)]
    f.read_ids(ids)
    for _, n, alloc_txn, _ in pages:
        f.allocate(alloc_txn, n)
    for pid, n, _, free_txn in pages:
        f.free(free_txn, make_page(pid, overflow=n - 1))
    for begin, end in ranges:
        f.release_range(begin, end)
    assert f.free_page_ids() == want, title


def test_hashmap_allocate():
    f = new_freelist(FreelistType.HASHMAP)
    f.read_ids([3, 4, 5, 6, 7, 9, 12, 13, 18])
    f.allocate(1, 3)
    assert f.free_count() == 6
    f.allocate(1, 2)
    assert f.free_count() == 4
    f.allocate(1, 1)
    assert f.free_count() == 3
    assert f.allocate(1, 0) == 0
    assert f.free_count() == 3


def test_array_allocate():
    f = new_freelist(FreelistType.ARRAY)
    f.read_ids([3, 4, 5, 6, 7, 9, 12, 13, 18])
    assert f.allocate(1, 3) == 3
    assert f.allocate(1, 1) == 6
    assert f.allocate(1, 3) == 0
    assert f.allocate(1, 2) == 12
    assert f.allocate(1, 1) == 7
    assert f.allocate(1, 0) == 0
    assert f.allocate(1, 0) == 0
    assert f.free_page_ids() == [9, 18]
    assert f.allocate(1, 1) == 9
    assert f.allocate(1, 1) == 18
    assert f.allocate(1, 1) == 0
    assert f.free_page_ids() == []


@pytest.mark.parametrize("kind", BOTH)
def test_allocate_updates_cache_and_allocs(kind):
    f = new_freelist(kind)
    f.read_ids([3, 4, 5])
    assert f.freed(4)
    assert f.allocate(7, 2) == 3
    assert not f.freed(3)
    assert not f.freed(4)
    assert f.freed(5)
    assert f.allocs[3] == 7


@pytest.mark.parametrize("kind", BOTH)
def test_read(kind):
    page = new_page(4096, 0, PageType.FREELIST)
    page.count = 2
    struct.pack_into("<QQ", page.data, PAGE_HEADER_SIZE, 23, 50)
    f = new_freelist(kind)
    f.read(page)
    assert f.free_page_ids() == [23, 50]


@pytest.mark.parametrize("kind", BOTH)
def test_read_rejects_non_freelist_page(kind):
    f = new_freelist(kind)
    with pytest.raises(CorruptError):
        f.read(new_page(4096, 7, PageType.LEAF))


@pytest.mark.parametrize("kind", BOTH)
def test_write(kind):
    page = new_page(4096, 0)
    f = new_freelist(kind)
    f.read_ids([12, 39])
    f.pending[100] = TxPending(ids=[28, 11])
    f.pending[101] = TxPending(ids=[3])
    f.write(page)
    assert page.flags & PageType.FREELIST
    f2 = new_freelist(kind)
    f2.read(page)
    assert f2.free_page_ids() == [3, 11, 12, 28, 39]


@pytest.mark.parametrize("kind", BOTH)
def test_write_overflow_count_round_trip(kind):
    ids = list(range(2, 2 + 0x10000))
    f = new_freelist(kind)
    f.read_ids(ids)
    assert f.size() == PAGE_HEADER_SIZE + 8 * (len(ids) + 1)
    page = new_page(f.size(), 0)
    f.write(page)
    assert page.count == 0xFFFF
    f2 = new_freelist(kind)
    f2.read(page)
    assert f2.free_page_ids() == ids


@pytest.mark.parametrize("kind", BOTH)
def test_write_rejects_small_page(kind):
    f = new_freelist(kind)
    f.read_ids([5, 6, 7])
    with pytest.raises(ValueError):
        f.write(new_page(PAGE_HEADER_SIZE + 8, 0))


@pytest.mark.parametrize("kind", BOTH)
def test_size_and_counts(kind):
    f = new_freelist(kind)
    f.read_ids([4, 5, 9])
    f.free(10, make_page(20, overflow=1))
    assert f.free_count() == 3
    assert f.pending_count() == 2
    assert f.count() == 5
    assert f.size() == PAGE_HEADER_SIZE + 8 * 5
    assert f.copyall() == [4, 5, 9, 20, 21]


@pytest.mark.parametrize("kind", BOTH)
def test_read_ids_and_free_page_ids(kind):
    exp = [3, 4, 5, 6, 7, 9, 12, 13, 18]
    f = new_freelist(kind)
    f.read_ids(exp)
    assert f.free_page_ids() == exp
    f2 = new_freelist(kind)
    f2.read_ids([])
    assert f2.free_page_ids() == []


@pytest.mark.parametrize("kind", BOTH)
def test_rollback_restores_alloc_of_other_tx(kind):
    f = new_freelist(kind)
    f.read_ids([10])
    assert f.allocate(5, 1) == 10
    f.free(6, make_page(10))
    f.rollback(6)
    assert 6 not in f.pending
    assert f.allocs[10] == 5
    assert f.free_page_ids() == []
    assert not f.freed(10)


@pytest.mark.parametrize("kind", BOTH)
def test_rollback_frees_page_allocated_by_same_tx(kind):
    f = new_freelist(kind)
    f.read_ids([10])
    assert f.allocate(6, 1) == 10
    f.free(6, make_page(10))
    f.rollback(6)
    assert f.free_page_ids() == [10]


@pytest.mark.parametrize("kind", BOTH)
def test_reload_filters_pending(kind):
    page = new_page(4096, 0, PageType.FREELIST)
    page.count = 3
    struct.pack_into("<QQQ", page.data, PAGE_HEADER_SIZE, 8, 4, 6)
    f = new_freelist(kind)
    f.pending[3] = TxPending(ids=[6], alloctx=[0])
    f.reload(page)
    assert f.free_page_ids() == [4, 8]
    f.no_sync_reload([6, 7, 11])
    assert f.free_page_ids() == [7, 11]


@pytest.mark.parametrize(
    "ids,pgid,want,forward,backward,freemaps",
    [
        ([1, 2, 4, 5, 6], 3, [1, 2, 3, 4, 5, 6], {1: 6}, {6: 6}, {6: {1}}),
        ([1, 2, 5, 6], 3, [1, 2, 3, 5, 6], {1: 3, 5: 2}, {6: 2, 3: 3}, {3: {1}, 2: {5}}),
        ([1, 2], 3, [1, 2, 3], {1: 3}, {3: 3}, {3: {1}}),
        ([2, 3], 1, [1, 2, 3], {1: 3}, {3: 3}, {3: {1}}),
    ],
)
def test_merge_with_existing_span(ids, pgid, want, forward, backward, freemaps):
    f = new_freelist(FreelistType.HASHMAP)
    f.read_ids(ids)
    f.merge_with_existing_span(pgid)
    assert f.free_page_ids() == want
    assert f.forward_map == forward
    assert f.backward_map == backward
    assert f.freemaps == freemaps


def test_hashmap_read_ids_requires_sorted():
    f = new_freelist(FreelistType.HASHMAP)
    with pytest.raises(ValueError):
        f.read_ids([5, 3])