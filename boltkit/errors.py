"""Exceptions raised by the storage engine and its low-level tools."""

from __future__ import annotations


class BoltError(Exception):
    """Base class of every error raised by the database."""

    default_message = "database error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class DatabaseNotOpenError(BoltError):
    """The database was used before it was opened or after it was closed."""

    default_message = "database not open"


class DatabaseOpenError(BoltError):
    """The database is already open."""

    default_message = "database already open"


class InvalidDatabaseError(BoltError):
    """Both meta pages are invalid; the file is usually not a database."""

    default_message = "invalid database"


class InvalidMappingError(BoltError):
    """The database file could not be mapped."""

    default_message = "database isn't correctly mapped"


class VersionMismatchError(BoltError):
    """The data file was written by a different format version."""

    default_message = "version mismatch"


class ChecksumError(BoltError):
    """A meta page checksum does not match its contents."""

    default_message = "checksum error"


class LockTimeoutError(BoltError, TimeoutError):
    """The file lock could not be obtained in time."""

    default_message = "timeout"


class TxNotWritableError(BoltError):
    """A write was attempted in a read-only transaction."""

    default_message = "tx not writable"


class TxClosedError(BoltError):
    """The transaction has already been committed or rolled back."""

    default_message = "tx closed"


class DatabaseReadOnlyError(BoltError):
    """A writable transaction was requested on a read-only database."""

    default_message = "database is in read-only mode"


class FreePagesNotLoadedError(BoltError):
    """Free pages were accessed without being loaded first."""

    default_message = "free pages are not pre-loaded"


class HighLoadPendingPagesError(BoltError):
    """Too many pages are waiting to be released to start a writer."""

    default_message = "too many pending pages"


class BucketNotFoundError(BoltError, KeyError):
    """The requested bucket does not exist."""

    default_message = "bucket not found"

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class BucketExistsError(BoltError):
    """A bucket with that name already exists."""

    default_message = "bucket already exists"


class BucketNameRequiredError(BoltError, ValueError):
    """A bucket name was empty."""

    default_message = "bucket name required"


class KeyRequiredError(BoltError, ValueError):
    """A key was empty."""

    default_message = "key required"


class KeyTooLargeError(BoltError, ValueError):
    """A key exceeds the maximum key size."""

    default_message = "key too large"


class ValueTooLargeError(BoltError, ValueError):
    """A value exceeds the maximum value size."""

    default_message = "value too large"


class IncompatibleValueError(BoltError):
    """A bucket operation hit a plain key, or a key operation hit a bucket."""

    default_message = "incompatible value"


class CorruptError(BoltError):
    """The data file holds inconsistent structures."""

    default_message = "invalid value"