"""
Store Merger - reconcile file metadata between two SQLite stores.

Features:
- One-directional merge of matched rows (keyed on path)
- Declarative (field, combinator) rules, MIN2 and COALESCE2 by default
- Single atomic transaction, source attached read-only
- Row-wise or bulk update-from-join strategies
- Dry run with per-field change report
"""

__version__ = "1.0.0"
