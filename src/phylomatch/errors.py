"""Error taxonomy for tree/data reconciliation."""

from __future__ import annotations

from typing import Iterable


def _preview(items: Iterable[str], limit: int = 10) -> str:
    values = sorted(str(x) for x in items)
    shown = ", ".join(values[:limit])
    if len(values) > limit:
        shown += f", ... (+{len(values) - limit} more)"
    return shown


class PhyloMatchError(ValueError):
    """Base class for all phylomatch errors."""


class StructuralTreeError(PhyloMatchError):
    """Tree is not a single-rooted, acyclic tree with named leaves."""


class DuplicateKeyError(PhyloMatchError):
    """Key values map ambiguously to tree leaves."""

    def __init__(self, duplicates: dict[str, int], *, source: str = "key column") -> None:
        self.duplicates = dict(duplicates)
        detail = ", ".join(f"{k} (x{n})" for k, n in sorted(self.duplicates.items())[:10])
        super().__init__(
            f"{len(self.duplicates)} duplicated value(s) in {source}: {detail}. "
            "Deduplicate the source data before reconciling."
        )


class DuplicateLeafError(StructuralTreeError, DuplicateKeyError):
    """Tree carries the same leaf label more than once."""

    def __init__(self, duplicates: dict[str, int]) -> None:
        DuplicateKeyError.__init__(self, duplicates, source="tree leaf labels")


class KeyTypeError(PhyloMatchError, TypeError):
    """Key column holds values that are not strings, so they can never equal a tip label."""

    def __init__(self, key_column: str, dtype: str, examples: Iterable[object]) -> None:
        self.key_column = key_column
        self.dtype = dtype
        self.examples = tuple(examples)
        super().__init__(
            f"Key column {key_column!r} holds non-string values (dtype {dtype}, e.g. "
            f"{_preview(repr(x) for x in self.examples)}). Tip labels are strings; convert the "
            "column with .astype(str) or read the table with read_table, which keeps keys as text."
        )


class EmptyIntersectionError(PhyloMatchError):
    def __init__(self, n_leaves: int, n_rows: int) -> None:
        self.n_leaves = int(n_leaves)
        self.n_rows = int(n_rows)
        super().__init__(
            f"Tree leaves and dataset keys share no labels "
            f"(tree has {self.n_leaves} leaves, dataset has {self.n_rows} rows). "
            "Check that the key column holds tip labels spelled exactly as in the tree."
        )


class MissingColumnError(PhyloMatchError, KeyError):
    def __init__(self, missing: Iterable[str], available: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(
            f"Column(s) not found: {_preview(self.missing)}. "
            f"Available columns: {_preview(available)}"
        )

    def __str__(self) -> str:
        return str(self.args[0])


class MissingLabelError(PhyloMatchError, KeyError):
    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"Leaf label(s) not in tree: {_preview(self.missing)}")

    def __str__(self) -> str:
        return str(self.args[0])


class UltrametricCoercionError(PhyloMatchError):
    """Refusal to coerce a tree whose tips are not at a common depth."""

    def __init__(self, message: str, tips: Iterable[str] = ()) -> None:
        self.tips = tuple(tips)
        if self.tips:
            message = f"{message} Offending tips: {_preview(self.tips)}"
        super().__init__(message)
