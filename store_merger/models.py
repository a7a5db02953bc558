"""Data models for store merger."""

from dataclasses import dataclass, asdict, field
from typing import Any


@dataclass
class RowChange:
    """A single field of a primary row that the merge rewrote."""
    path: str
    field: str
    before: Any
    after: Any


@dataclass
class MergeStats:
    """Outcome of a merge pass."""
    matched: int = 0
    updated: int = 0
    dry_run: bool = False
    changes: list[RowChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
