"""Field combinators and merge rules."""

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

KEY_COLUMN = "path"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def min2(primary: Any, source: Any) -> Any:
    """
    Return the smaller of two values, or None if either is None.

    Mirrors SQLite's multi-argument ``min()``: a missing value on either
    side yields None instead of the known value.
    """
    if primary is None or source is None:
        return None
    return min(primary, source)


def coalesce2(primary: Any, source: Any) -> Any:
    """Return the primary value unless it is None, else the source value."""
    return primary if primary is not None else source


@dataclass(frozen=True)
class Combinator:
    """
    A two-argument combinator with its SQL equivalent.

    When ``sql`` is set the merge evaluates the combinator in SQLite, which
    compares values of mixed types the way the store does; ``func`` is then
    only a Python mirror. Combinators without ``sql`` run in Python.
    """
    name: str
    func: Callable[[Any, Any], Any]
    sql: Optional[str] = None

    def __call__(self, primary: Any, source: Any) -> Any:
        return self.func(primary, source)

    def to_sql(self, primary: str, source: str) -> str:
        if self.sql is None:
            raise ValueError(f"Combinator {self.name!r} has no SQL form")
        return self.sql.format(primary=primary, source=source)


MIN2 = Combinator("min2", min2, "min({primary}, {source})")
COALESCE2 = Combinator("coalesce2", coalesce2, "coalesce({primary}, {source})")

COMBINATORS = {c.name: c for c in (MIN2, COALESCE2)}


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER.match(name))


@dataclass(frozen=True)
class FieldRule:
    """Merge ``field`` from the source into the primary with ``combinator``."""
    field: str
    combinator: Combinator

    def __post_init__(self):
        if not is_identifier(self.field):
            raise ValueError(f"Invalid column name: {self.field!r}")
        if self.field == KEY_COLUMN:
            raise ValueError(f"The key column {KEY_COLUMN!r} cannot be merged")

    def __str__(self) -> str:
        return f"{self.field}={self.combinator.name}"


DEFAULT_RULES = (
    FieldRule("size_bytes", MIN2),
    FieldRule("optimized", COALESCE2),
)


def get_combinator(name: str) -> Combinator:
    """Look up a combinator by name."""
    try:
        return COMBINATORS[name.strip().lower()]
    except KeyError:
        choices = ", ".join(sorted(COMBINATORS))
        raise ValueError(f"Unknown combinator {name!r} (choose from {choices})") from None


def parse_rule(text: str) -> FieldRule:
    """Parse a ``field=combinator`` string."""
    field, sep, name = text.partition("=")
    if not sep or not field.strip() or not name.strip():
        raise ValueError(f"Expected FIELD=COMBINATOR, got {text!r}")
    return FieldRule(field.strip(), get_combinator(name))


def parse_rules(texts: Optional[Iterable[str]]) -> tuple[FieldRule, ...]:
    """Parse rule strings, falling back to the default rules when empty."""
    if not texts:
        return DEFAULT_RULES

    rules = []
    seen = set()
    for text in texts:
        rule = parse_rule(text)
        if rule.field in seen:
            raise ValueError(f"Duplicate rule for field {rule.field!r}")
        seen.add(rule.field)
        rules.append(rule)
    return tuple(rules)
