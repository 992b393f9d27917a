from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .errors import UltrametricCoercionError
from .phylo import TreeNode, validate_tree


@dataclass(frozen=True)
class TreeHealth:
    is_binary: bool
    is_rooted: bool
    is_ultrametric: bool
    n_tips: int
    n_internal: int
    n_polytomies: int
    n_negative_branches: int
    min_depth: float
    max_depth: float
    duplicate_labels: tuple[str, ...] = ()
    issues: tuple[str, ...] = field(default_factory=tuple)

    @property
    def depth_spread(self) -> float:
        return self.max_depth - self.min_depth

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_binary": self.is_binary,
            "is_rooted": self.is_rooted,
            "is_ultrametric": self.is_ultrametric,
            "n_tips": self.n_tips,
            "n_internal": self.n_internal,
            "n_polytomies": self.n_polytomies,
            "n_negative_branches": self.n_negative_branches,
            "min_depth": self.min_depth,
            "max_depth": self.max_depth,
            "duplicate_labels": list(self.duplicate_labels),
            "issues": list(self.issues),
        }

    def render(self) -> str:
        def _flag(ok: bool) -> str:
            return "PASS" if ok else "WARN"

        lines = [
            f"[{_flag(self.is_rooted)}] rooted: {self.is_rooted}",
            f"[{_flag(self.is_binary)}] binary: {self.is_binary} ({self.n_polytomies} polytomies)",
            f"[{_flag(self.is_ultrametric)}] ultrametric: {self.is_ultrametric} "
            f"(root-to-tip range [{self.min_depth:.12g}, {self.max_depth:.12g}])",
            f"tips={self.n_tips} internal_nodes={self.n_internal}",
        ]
        for issue in self.issues:
            lines.append(f"  note: {issue}")
        return "\n".join(lines)


def is_ultrametric_depths(depths: np.ndarray, *, rtol: float = 1e-8, atol: float = 0.0) -> bool:
    if depths.size == 0:
        return True
    spread = float(np.max(depths) - np.min(depths))
    scale = float(np.max(np.abs(depths)))
    return spread <= max(rtol * scale, atol)


def check_tree(tree: TreeNode, *, rtol: float = 1e-8, atol: float = 0.0) -> TreeHealth:
    """Read-only structural diagnostics. Never raises for any tree shape."""
    seen: set[int] = set()
    shared = False
    n_internal = 0
    n_polytomies = 0
    n_negative = 0
    labels: list[str] = []
    depths: list[float] = []
    issues: list[str] = []

    stack: list[tuple[TreeNode, float]] = [(tree, float(tree.length))]
    while stack:
        node, depth = stack.pop()
        if id(node) in seen:
            shared = True
            continue
        seen.add(id(node))
        if node is not tree and node.length < 0:
            n_negative += 1
        if node.is_leaf:
            labels.append(node.name or "")
            depths.append(depth)
            continue
        n_internal += 1
        if len(node.children) > 2:
            n_polytomies += 1
        for child in reversed(node.children):
            stack.append((child, depth + float(child.length)))

    basal_polytomy = len(tree.children) > 2
    if shared:
        issues.append("a node is reachable through more than one parent (not a tree)")
    if basal_polytomy:
        issues.append(f"root has {len(tree.children)} children (unrooted basal polytomy)")
    if n_negative:
        issues.append(f"{n_negative} negative branch length(s)")
    unnamed = sum(1 for label in labels if not label)
    if unnamed:
        issues.append(f"{unnamed} unnamed leaf node(s)")
    duplicates = tuple(sorted(label for label, n in Counter(labels).items() if label and n > 1))
    if duplicates:
        issues.append(f"{len(duplicates)} duplicated leaf label(s)")

    depth_arr = np.asarray(depths, dtype=float)
    return TreeHealth(
        is_binary=n_polytomies == 0,
        is_rooted=not shared and not basal_polytomy,
        is_ultrametric=is_ultrametric_depths(depth_arr, rtol=rtol, atol=atol),
        n_tips=len(labels),
        n_internal=n_internal,
        n_polytomies=n_polytomies,
        n_negative_branches=n_negative,
        min_depth=float(depth_arr.min()) if depth_arr.size else 0.0,
        max_depth=float(depth_arr.max()) if depth_arr.size else 0.0,
        duplicate_labels=duplicates,
        issues=tuple(issues),
    )


def force_ultrametric(
    tree: TreeNode,
    *,
    method: str = "extend",
    max_relative_spread: float | None = None,
) -> TreeNode:
    """Stretch or shrink terminal branches so every tip sits at one depth.

    Only valid for trees known to be ultrametric whose branch lengths lost
    precision. ``method="extend"`` targets the deepest tip and only lengthens
    branches; ``method="mean"`` targets the mean depth. A terminal branch that
    would become negative means the tree is genuinely non-ultrametric and the
    call is refused.
    """
    validate_tree(tree)
    depths = tree.root_to_tip()
    values = np.asarray(list(depths.values()), dtype=float)
    mode = method.lower()
    if mode == "extend":
        target = float(values.max())
    elif mode == "mean":
        target = float(values.mean())
    else:
        raise ValueError(f"Unsupported method: {method}. Use 'extend' or 'mean'.")

    if max_relative_spread is not None and target > 0:
        spread = float(values.max() - values.min()) / float(values.max())
        if spread > max_relative_spread:
            far = [name for name, d in depths.items() if abs(d - target) / target > max_relative_spread]
            raise UltrametricCoercionError(
                f"Relative root-to-tip spread {spread:.3g} exceeds {max_relative_spread:.3g}; "
                "the tree looks genuinely non-ultrametric.",
                far,
            )

    out = tree.copy()
    negative: list[str] = []
    for leaf in out.iter_leaves():
        new_length = float(leaf.length) + (target - depths[str(leaf.name)])
        if new_length < 0:
            negative.append(str(leaf.name))
            continue
        leaf.length = new_length
    if negative:
        raise UltrametricCoercionError(
            f"Coercing to depth {target:.12g} would give {len(negative)} negative terminal "
            "branch(es); tips are at genuinely different depths (e.g. fossil tips).",
            negative,
        )
    return out
