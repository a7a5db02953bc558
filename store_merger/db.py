"""SQLite access for a merge: the primary store with the source attached read-only."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence, Union

from .errors import (
    LockContention,
    MergeError,
    SchemaMismatch,
    StoreNotFound,
    TransactionFailure,
)
from .rules import KEY_COLUMN, FieldRule

TABLE = "files"
PRIMARY_SCHEMA = "main"
SOURCE_SCHEMA = "src"

# Primary result codes, compared against the low byte of extended codes
SQLITE_BUSY = 5
SQLITE_LOCKED = 6

# UPDATE ... FROM appeared in SQLite 3.33.0
BULK_UPDATE_SUPPORTED = sqlite3.sqlite_version_info >= (3, 33, 0)

StorePath = Union[str, Path]


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def store_uri(path: Path, mode: str) -> str:
    """Build a SQLite URI for ``path`` opened with the given access mode."""
    return f"{path.resolve().as_uri()}?mode={mode}"


def is_lock_error(exc: sqlite3.Error) -> bool:
    """Check whether a SQLite error means another connection holds a lock."""
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        return (code & 0xFF) in (SQLITE_BUSY, SQLITE_LOCKED)
    return "locked" in str(exc).lower()


def translate_error(exc: sqlite3.Error, message: str) -> MergeError:
    """Map a SQLite error raised inside a transaction to a merge failure."""
    if is_lock_error(exc):
        return LockContention(f"{message}: store is locked by another connection ({exc})")
    return TransactionFailure(f"{message}: {exc}")


class MergeSession:
    """
    A connection to the primary store with the source store attached as ``src``.

    The primary is opened read-write without create, the source read-only, so
    neither store is ever created and the source can never be written.
    Transactions are issued explicitly (autocommit connection).
    """

    def __init__(self, primary_path: StorePath, source_path: StorePath, timeout: float = 5.0):
        self.primary_path = Path(primary_path)
        self.source_path = Path(source_path)

        for label, path in (("Primary", self.primary_path), ("Source", self.source_path)):
            if not path.is_file():
                raise StoreNotFound(f"{label} store does not exist: {path}")
        if self.primary_path.samefile(self.source_path):
            raise MergeError(f"Primary and source are the same store: {self.primary_path}")

        try:
            self.conn = sqlite3.connect(
                store_uri(self.primary_path, "rw"),
                timeout=timeout,
                isolation_level=None,
                uri=True
            )
        except sqlite3.Error as e:
            raise StoreNotFound(f"Cannot open primary store {self.primary_path}: {e}") from e

        self._attached = False
        self.closed = False
        try:
            self._check_readable(PRIMARY_SCHEMA, self.primary_path)
            self._attach()
        except BaseException:
            self.conn.close()
            raise

    def __enter__(self) -> "MergeSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_readable(self, schema: str, path: Path) -> None:
        """Force SQLite to read the database header."""
        try:
            self.conn.execute(f"SELECT count(*) FROM {schema}.sqlite_master").fetchone()
        except sqlite3.Error as e:
            if is_lock_error(e):
                raise LockContention(f"Store is locked: {path} ({e})") from e
            raise StoreNotFound(f"Not a valid SQLite store: {path} ({e})") from e

    def _attach(self) -> None:
        try:
            self.conn.execute(
                f"ATTACH DATABASE ? AS {SOURCE_SCHEMA}",
                (store_uri(self.source_path, "ro"),)
            )
        except sqlite3.Error as e:
            raise StoreNotFound(f"Cannot attach source store {self.source_path}: {e}") from e
        self._attached = True
        self._check_readable(SOURCE_SCHEMA, self.source_path)

    def close(self) -> None:
        """Detach the source store and close the connection."""
        if self.closed:
            return
        try:
            self._rollback()
            if self._attached:
                self.conn.execute(f"DETACH DATABASE {SOURCE_SCHEMA}")
        except sqlite3.Error as e:
            raise TransactionFailure(f"Cannot detach source store {self.source_path}: {e}") from e
        finally:
            self._attached = False
            self.conn.close()
            self.closed = True

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def columns(self, schema: str) -> set[str]:
        """Column names of the ``files`` table in a schema (empty if absent)."""
        cursor = self.conn.execute(f"PRAGMA {schema}.table_info({TABLE})")
        return {row[1] for row in cursor}

    def check_schema(self, rules: Sequence[FieldRule]) -> None:
        """Verify both stores expose the key column and every rule field."""
        required = [KEY_COLUMN] + [rule.field for rule in rules]
        stores = (
            (PRIMARY_SCHEMA, "primary", self.primary_path),
            (SOURCE_SCHEMA, "source", self.source_path),
        )
        for schema, label, path in stores:
            try:
                columns = self.columns(schema)
            except sqlite3.Error as e:
                raise SchemaMismatch(f"Cannot read schema of {label} store {path}: {e}") from e
            if not columns:
                raise SchemaMismatch(f"Table '{TABLE}' not found in {label} store: {path}")
            missing = [name for name in required if name not in columns]
            if missing:
                raise SchemaMismatch(
                    f"Table '{TABLE}' in {label} store {path} is missing column(s): "
                    + ", ".join(missing)
                )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    @contextmanager
    def transaction(self, rollback: bool = False) -> Iterator["MergeSession"]:
        """
        Run the enclosed block inside one write transaction on the primary.

        Commits on success and rolls back on any exception, so either every
        statement of the block is applied or none is. With ``rollback=True``
        the block is always rolled back (dry run).
        """
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise translate_error(e, "Cannot begin transaction") from e

        try:
            yield self
            if rollback:
                self._rollback()
            else:
                self.conn.execute("COMMIT")
        except MergeError:
            self._rollback()
            raise
        except sqlite3.Error as e:
            self._rollback()
            raise translate_error(e, "Merge rolled back") from e
        except Exception as e:
            self._rollback()
            raise TransactionFailure(f"Merge rolled back: {e}") from e
        except BaseException:
            self._rollback()
            raise

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _join(self) -> str:
        key = _quote(KEY_COLUMN)
        return (
            f"FROM {PRIMARY_SCHEMA}.{_quote(TABLE)} AS p "
            f"JOIN {SOURCE_SCHEMA}.{_quote(TABLE)} AS s ON p.{key} = s.{key}"
        )

    def count_matched(self) -> int:
        """Count primary rows whose path also exists in the source."""
        cursor = self.conn.execute(f"SELECT count(*) {self._join()}")
        return cursor.fetchone()[0]

    def matched_rows(self, rules: Sequence[FieldRule]) -> list[tuple[str, tuple, tuple, tuple]]:
        """
        Fetch both sides of every rule field for each matched path.

        Returns (path, primary values, source values, merged values) tuples
        ordered by path. Merged values come from each combinator's SQL form;
        rules whose combinator has none get None there.
        """
        selected = []
        for rule in rules:
            old = f"p.{_quote(rule.field)}"
            candidate = f"s.{_quote(rule.field)}"
            merged = "NULL" if rule.combinator.sql is None else rule.combinator.to_sql(old, candidate)
            selected.append(f"{old}, {candidate}, {merged}")
        cursor = self.conn.execute(
            f"SELECT p.{_quote(KEY_COLUMN)}, {', '.join(selected)} {self._join()} "
            f"ORDER BY p.{_quote(KEY_COLUMN)}"
        )
        rows = []
        for row in cursor:
            values = row[1:]
            rows.append((
                row[0],
                tuple(values[0::3]),
                tuple(values[1::3]),
                tuple(values[2::3])
            ))
        return rows

    def update_row(self, path: str, values: dict[str, Any]) -> None:
        """Write new values for one primary row in a single statement."""
        assignments = ", ".join(f"{_quote(name)} = ?" for name in values)
        self.conn.execute(
            f"UPDATE {PRIMARY_SCHEMA}.{_quote(TABLE)} SET {assignments} "
            f"WHERE {_quote(KEY_COLUMN)} = ?",
            (*values.values(), path)
        )

    def count_changed(self, rules: Sequence[FieldRule]) -> int:
        """Count matched rows that applying ``rules`` would modify."""
        conditions = " OR ".join(
            f"p.{_quote(rule.field)} IS NOT "
            + rule.combinator.to_sql(f"p.{_quote(rule.field)}", f"s.{_quote(rule.field)}")
            for rule in rules
        )
        cursor = self.conn.execute(f"SELECT count(*) {self._join()} WHERE {conditions}")
        return cursor.fetchone()[0]

    def bulk_update(self, rules: Sequence[FieldRule]) -> int:
        """Apply ``rules`` to every matched row with one update-from-join statement."""
        target = _quote(TABLE)
        key = _quote(KEY_COLUMN)
        assignments = ", ".join(
            f"{_quote(rule.field)} = "
            + rule.combinator.to_sql(f"{target}.{_quote(rule.field)}", f"s.{_quote(rule.field)}")
            for rule in rules
        )
        cursor = self.conn.execute(
            f"UPDATE {PRIMARY_SCHEMA}.{target} SET {assignments} "
            f"FROM {SOURCE_SCHEMA}.{target} AS s WHERE {target}.{key} = s.{key}"
        )
        return cursor.rowcount

    def count_rows(self, schema: str = PRIMARY_SCHEMA) -> int:
        cursor = self.conn.execute(f"SELECT count(*) FROM {schema}.{_quote(TABLE)}")
        return cursor.fetchone()[0]
