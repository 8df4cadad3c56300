# boltkit

Tools for working with single-file, page-based B+tree key/value database
files at the page level. The package decodes and encodes pages, keeps the
free-page list, and handles meta pages.

## Modules

- `boltkit.layout` decodes and encodes the on-disk structures. It has
  `Page`, `Meta`, `BucketHeader`, `LeafElement`, `BranchElement` and the
  `PageType` flags, plus `new_page` for building a zeroed page. It reads and
  writes raw pages in a file with `read_page`, `write_page`,
  `read_page_size_and_hwm` and `get_root_page`. `get_root_page` returns the
  root page id and the index of the active meta page.
- `boltkit.freelist` is the free-page allocator. `new_freelist` returns an
  `ArrayFreelist` or a `HashmapFreelist`, chosen by `FreelistType`. The
  allocator allocates runs of contiguous pages and records pages freed by a
  transaction as pending (`TxPending`). It can release them with `release`
  or `release_range`, or roll them back with `rollback`. It reads itself from
  a freelist page and writes itself back to one with `read` and `write`.
- `boltkit.meta` handles meta pages and file-wide settings:
  - `checksum` computes the FNV-1a checksum and `validate_meta` checks a meta
    page.
  - `write_meta` writes a meta page.
  - `active_meta` picks the active meta page of the two.
  - `mmap_size` gives the mapping size steps.
  - `initial_layout` gives the bytes of a new, empty file.
  - `freelist_page_id` gives the page where the freelist starts.
  - `detect_page_size`, `page_size_from_first_meta` and
    `page_size_from_second_meta` find the page size of an existing file.
- `boltkit.errors` holds the exceptions. All of them are subclasses of
  `BoltError`, for example `InvalidDatabaseError`, `VersionMismatchError`,
  `ChecksumError` and `CorruptError`.

## Install

    pip install .

To install the test extra and run the tests:

    pip install ".[test]"
    pytest

## Examples

Create an empty database file, then inspect it:

```python
from boltkit.layout import get_root_page, read_page, read_page_size_and_hwm
from boltkit.meta import active_meta, initial_layout

with open("data.db", "wb") as fh:
    fh.write(initial_layout(4096))

page_size, hwm = read_page_size_and_hwm("data.db")
meta = active_meta(read_page("data.db", 0).meta(), read_page("data.db", 1).meta())
print(meta.describe())

root, active = get_root_page("data.db")
print(read_page("data.db", root))   # ID: ..., Type: leaf, count: 0, overflow: 0
```

Allocate pages from a freelist and write it to a page:

```python
from boltkit.freelist import FreelistType, new_freelist
from boltkit.layout import PageType, new_page

fl = new_freelist(FreelistType.ARRAY)
fl.read_ids([3, 4, 5, 6, 7, 9, 12, 13, 18])
assert fl.allocate(1, 3) == 3          # lowest run of three pages

page = new_page(4096, 2, PageType.FREELIST)
fl.write(page)
print(page.freelist_ids())             # [6, 7, 9, 12, 13, 18]
```

## What the package does not do

The package works on pages, meta records and freelists only. It does not
give you a database handle for normal use. In particular, it does not provide:

- opening a file for use or locking it;
- transactions, buckets or cursors;
- storing and fetching keys and values;
- statistics;
- tools that copy pages, clear pages or roll a file back to its previous
  meta page.

The page functions in `boltkit.layout` read and write the file directly,
with no transactional safety.