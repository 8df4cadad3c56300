"""Page layout, freelist and meta page handling for B+tree key/value database files."""

__version__ = "0.1.0"
__all__ = ["errors", "freelist", "layout", "meta"]