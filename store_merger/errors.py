"""Failures raised by the merge engine."""


class MergeError(Exception):
    """Base class for every merge failure."""

    exit_code = 1


class StoreNotFound(MergeError):
    """A store location is missing or is not a SQLite database."""


class SchemaMismatch(MergeError):
    """The ``files`` table or one of the merged columns is absent."""


class LockContention(MergeError):
    """The primary store is locked by another writer.

    The merge does not retry; callers may run it again later.
    """

    exit_code = 75  # EX_TEMPFAIL


class TransactionFailure(MergeError):
    """The update failed and was rolled back."""
