"""Core merge logic."""

from typing import Any, Iterable, Optional, Sequence

from tqdm import tqdm

from .db import BULK_UPDATE_SUPPORTED, MergeSession, StorePath
from .errors import MergeError, TransactionFailure
from .models import MergeStats, RowChange
from .rules import DEFAULT_RULES, FieldRule

STRATEGIES = ("rows", "bulk")


def combine_values(
    rules: Sequence[FieldRule],
    primary: Sequence[Any],
    source: Sequence[Any],
    computed: Optional[Sequence[Any]] = None
) -> tuple:
    """
    Apply each rule's combinator to the matching pair of values.

    ``computed`` holds values SQLite already produced from the combinators'
    SQL forms; those are kept, and only combinators without one run here.
    """
    if computed is None:
        return tuple(
            rule.combinator(old, candidate)
            for rule, old, candidate in zip(rules, primary, source)
        )
    return tuple(
        value if rule.combinator.sql is not None else rule.combinator(old, candidate)
        for rule, old, candidate, value in zip(rules, primary, source, computed)
    )


def _merge_row_by_row(
    session: MergeSession,
    rules: Sequence[FieldRule],
    stats: MergeStats,
    progress: bool
) -> None:
    fields = [rule.field for rule in rules]
    rows = session.matched_rows(rules)
    stats.matched = len(rows)

    with tqdm(rows, desc="Merging", unit="row", disable=not progress) as pbar:
        for path, primary, source, computed in pbar:
            merged = combine_values(rules, primary, source, computed)
            changes = [
                RowChange(path, name, before, after)
                for name, before, after in zip(fields, primary, merged)
                if before != after
            ]
            if not changes:
                continue
            # All rule fields in one SET clause
            session.update_row(path, dict(zip(fields, merged)))
            stats.updated += 1
            stats.changes.extend(changes)


def _merge_bulk(session: MergeSession, rules: Sequence[FieldRule], stats: MergeStats) -> None:
    stats.matched = session.count_matched()
    stats.updated = session.count_changed(rules)
    session.bulk_update(rules)


def merge_stores(
    session: MergeSession,
    rules: Iterable[FieldRule] = DEFAULT_RULES,
    strategy: str = "rows",
    dry_run: bool = False,
    progress: bool = False
) -> MergeStats:
    """
    Merge the source store into the primary store.

    Every primary row whose path also exists in the source gets each rule's
    field replaced by ``combinator(primary value, source value)``. Rows that
    exist on one side only are left alone; nothing is inserted or deleted
    and the source is never written.

    The whole update runs in a single transaction: on any failure nothing
    is applied. With ``dry_run`` the changes are computed and then rolled
    back.

    Args:
        session: Open session with the source attached
        rules: (field, combinator) pairs to apply
        strategy: "rows" for a read-then-write loop, "bulk" for a single
            update-from-join statement
        dry_run: Roll back instead of committing
        progress: Show a progress bar (rows strategy only)

    Returns:
        MergeStats with matched and updated row counts
    """
    rules = tuple(rules)
    if not rules:
        raise ValueError("At least one merge rule is required")
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy {strategy!r} (choose from {', '.join(STRATEGIES)})")
    if strategy == "bulk" and any(rule.combinator.sql is None for rule in rules):
        raise ValueError("The bulk strategy needs an SQL form for every combinator")
    if strategy == "bulk" and not BULK_UPDATE_SUPPORTED:
        raise MergeError("The bulk strategy requires SQLite 3.33 or newer")

    session.check_schema(rules)

    stats = MergeStats(dry_run=dry_run)
    with session.transaction(rollback=dry_run):
        row_count = session.count_rows()
        if strategy == "rows":
            _merge_row_by_row(session, rules, stats, progress)
        else:
            _merge_bulk(session, rules, stats)
        if session.count_rows() != row_count:
            raise TransactionFailure("Merge rolled back: primary row count changed during the update")
    return stats


def merge_files(
    primary_path: StorePath,
    source_path: StorePath,
    rules: Iterable[FieldRule] = DEFAULT_RULES,
    strategy: str = "rows",
    dry_run: bool = False,
    progress: bool = False,
    timeout: float = 5.0
) -> MergeStats:
    """Open both stores, merge the source into the primary and close them."""
    with MergeSession(primary_path, source_path, timeout=timeout) as session:
        return merge_stores(
            session,
            rules=rules,
            strategy=strategy,
            dry_run=dry_run,
            progress=progress
        )
