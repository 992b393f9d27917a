"""Match a trait table to a phylogeny.

``reconcile`` prunes the tree and filters/reorders the table so both carry the
same taxa in the same order; ``subset_complete`` restricts a table to complete
cases. Both return reports describing what was dropped instead of dropping
data silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import pandas as pd

from .errors import DuplicateKeyError, EmptyIntersectionError, KeyTypeError, MissingColumnError
from .phylo import TreeNode, prune_tree, validate_tree


@dataclass(frozen=True)
class MismatchReport:
    tree_not_data: frozenset[str]
    data_not_tree: frozenset[str]
    n_tree_leaves: int
    n_data_rows: int
    n_matched: int
    unkeyed_rows: tuple[int, ...] = ()

    @property
    def has_mismatch(self) -> bool:
        return bool(self.tree_not_data or self.data_not_tree or self.unkeyed_rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tree_not_data": sorted(self.tree_not_data),
            "data_not_tree": sorted(self.data_not_tree),
            "n_tree_leaves": self.n_tree_leaves,
            "n_data_rows": self.n_data_rows,
            "n_matched": self.n_matched,
            "unkeyed_rows": list(self.unkeyed_rows),
        }

    def render(self, limit: int = 20) -> str:
        lines = [
            f"Tree leaves: {self.n_tree_leaves}  dataset rows: {self.n_data_rows}  "
            f"matched: {self.n_matched}"
        ]
        status = "WARN" if self.tree_not_data else "PASS"
        lines.append(f"[{status}] in tree, not in data: {len(self.tree_not_data)}")
        for label in sorted(self.tree_not_data)[:limit]:
            lines.append(f"  - {label}")
        status = "WARN" if self.data_not_tree else "PASS"
        lines.append(f"[{status}] in data, not in tree: {len(self.data_not_tree)}")
        for label in sorted(self.data_not_tree)[:limit]:
            lines.append(f"  - {label}")
        if self.unkeyed_rows:
            lines.append(f"[WARN] rows with a missing key (dropped): {len(self.unkeyed_rows)}")
        return "\n".join(lines)


@dataclass(frozen=True)
class ReconciledPair:
    tree: TreeNode
    data: pd.DataFrame
    key_column: str

    @property
    def taxa(self) -> list[str]:
        return self.tree.leaf_names()

    def __iter__(self):
        # Allows ``tree, data = pair``.
        yield self.tree
        yield self.data


@dataclass(frozen=True)
class IncompleteCaseReport:
    n_before: int
    n_after: int
    required_columns: tuple[str, ...]
    dropped_rows: tuple[int, ...]
    dropped_keys: tuple[str, ...]
    missing_per_column: dict[str, int]

    @property
    def n_dropped(self) -> int:
        return self.n_before - self.n_after

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_before": self.n_before,
            "n_after": self.n_after,
            "n_dropped": self.n_dropped,
            "required_columns": list(self.required_columns),
            "dropped_rows": list(self.dropped_rows),
            "dropped_keys": list(self.dropped_keys),
            "missing_per_column": dict(self.missing_per_column),
        }

    def render(self) -> str:
        status = "WARN" if self.n_dropped else "PASS"
        lines = [
            f"[{status}] complete cases on {', '.join(self.required_columns) or '(no columns)'}: "
            f"{self.n_after}/{self.n_before} rows kept, {self.n_dropped} dropped"
        ]
        for column, n in self.missing_per_column.items():
            if n:
                lines.append(f"  {column}: {n} missing")
        if self.dropped_keys:
            lines.append(f"  dropped: {', '.join(self.dropped_keys[:20])}")
        return "\n".join(lines)


def _require_columns(data: pd.DataFrame, columns: Iterable[str]) -> None:
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise MissingColumnError(missing, [str(c) for c in data.columns])


def _key_positions(data: pd.DataFrame, key_column: str) -> tuple[dict[str, int], tuple[int, ...]]:
    keys = data[key_column].tolist()
    missing_mask = data[key_column].isna().tolist()
    unkeyed = tuple(i for i, is_missing in enumerate(missing_mask) if is_missing)
    non_text = [
        key for key, is_missing in zip(keys, missing_mask) if not is_missing and not isinstance(key, str)
    ]
    if non_text:
        raise KeyTypeError(key_column, str(data[key_column].dtype), non_text[:5])

    positions: dict[str, int] = {}
    counts: dict[str, int] = {}
    for i, (key, is_missing) in enumerate(zip(keys, missing_mask)):
        if is_missing:
            continue
        counts[key] = counts.get(key, 0) + 1
        positions.setdefault(key, i)
    duplicates = {k: n for k, n in counts.items() if n > 1}
    if duplicates:
        raise DuplicateKeyError(duplicates)
    return positions, unkeyed


def reconcile(
    tree: TreeNode,
    data: pd.DataFrame,
    key_column: str,
    *,
    index_by_key: bool = False,
) -> tuple[MismatchReport, ReconciledPair]:
    """Prune ``tree`` and filter/reorder ``data`` so they describe the same taxa.

    Labels are compared as exact, case-sensitive strings. Row ``i`` of the
    returned table belongs to leaf ``i`` of the returned tree. Neither input is
    modified.

    Raises:
        StructuralTreeError: the tree has shared nodes or unnamed leaves.
        DuplicateKeyError: duplicated key values or duplicated leaf labels.
        MissingColumnError: ``key_column`` is not a column of ``data``.
        KeyTypeError: the key column holds non-string values (e.g. integers).
        EmptyIntersectionError: no label is shared by tree and table.
    """
    leaves = validate_tree(tree)
    _require_columns(data, [key_column])
    positions, unkeyed = _key_positions(data, key_column)

    leaf_set = set(leaves)
    key_set = set(positions)
    tree_not_data = frozenset(leaf_set - key_set)
    data_not_tree = frozenset(key_set - leaf_set)
    matched = leaf_set & key_set
    if not matched:
        raise EmptyIntersectionError(n_leaves=len(leaves), n_rows=len(data))

    report = MismatchReport(
        tree_not_data=tree_not_data,
        data_not_tree=data_not_tree,
        n_tree_leaves=len(leaves),
        n_data_rows=len(data),
        n_matched=len(matched),
        unkeyed_rows=unkeyed,
    )

    pruned = prune_tree(tree, tree_not_data)
    order = [positions[label] for label in pruned.leaf_names()]
    matched_data = data.iloc[order].copy()
    if index_by_key:
        matched_data.index = pd.Index(matched_data[key_column].tolist(), name=None)
    else:
        matched_data = matched_data.reset_index(drop=True)
    return report, ReconciledPair(tree=pruned, data=matched_data, key_column=key_column)


def subset_complete(
    data: pd.DataFrame,
    required_columns: Iterable[str],
    *,
    key_column: str | None = None,
) -> tuple[pd.DataFrame, IncompleteCaseReport]:
    """Keep rows with a value in every required column.

    Row order is preserved. The tree is not touched: call ``reconcile`` again
    with the narrowed table when a matching tree is needed.
    """
    columns = tuple(dict.fromkeys(required_columns))
    _require_columns(data, columns)
    if key_column is not None:
        _require_columns(data, [key_column])

    if columns:
        missing = data.loc[:, list(columns)].isna()
        keep = ~missing.any(axis=1)
        missing_per_column = {c: int(missing[c].sum()) for c in columns}
    else:
        keep = pd.Series(True, index=data.index)
        missing_per_column = {}

    keep_mask = keep.to_numpy(dtype=bool)
    dropped_rows = tuple(int(i) for i, ok in enumerate(keep_mask) if not ok)
    dropped_keys: tuple[str, ...] = ()
    if key_column is not None:
        key_values = data[key_column].tolist()
        dropped_keys = tuple(str(key_values[i]) for i in dropped_rows)

    subset = data.loc[keep_mask].copy()
    report = IncompleteCaseReport(
        n_before=len(data),
        n_after=len(subset),
        required_columns=columns,
        dropped_rows=dropped_rows,
        dropped_keys=dropped_keys,
        missing_per_column=missing_per_column,
    )
    return subset, report
