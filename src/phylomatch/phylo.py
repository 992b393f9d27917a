from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .errors import DuplicateLeafError, EmptyIntersectionError, MissingLabelError, StructuralTreeError


@dataclass
class TreeNode:
    name: str | None = None
    length: float = 0.0
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_preorder(self) -> Iterator[TreeNode]:
        stack: list[TreeNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_leaves(self) -> Iterator[TreeNode]:
        return (node for node in self.iter_preorder() if node.is_leaf)

    def leaf_names(self) -> list[str]:
        names: list[str] = []
        for node in self.iter_leaves():
            if not node.name:
                raise StructuralTreeError("All leaf nodes must have names.")
            names.append(node.name)
        return names

    def branch_lengths(self) -> list[float]:
        return [child.length for node in self.iter_preorder() for child in node.children]

    def root_to_tip(self) -> dict[str, float]:
        """Root-to-tip distance of every leaf, root edge included."""
        depths: dict[str, float] = {}
        stack: list[tuple[TreeNode, float]] = [(self, float(self.length))]
        while stack:
            node, depth = stack.pop()
            if node.is_leaf:
                depths[str(node.name)] = depth
                continue
            for child in reversed(node.children):
                stack.append((child, depth + float(child.length)))
        return depths

    def copy(self) -> TreeNode:
        root = TreeNode(name=self.name, length=float(self.length))
        stack: list[tuple[TreeNode, TreeNode]] = [(self, root)]
        while stack:
            source, target = stack.pop()
            for child in source.children:
                node = TreeNode(name=child.name, length=float(child.length))
                target.children.append(node)
                stack.append((child, node))
        return root


def validate_tree(tree: TreeNode) -> list[str]:
    """Check that ``tree`` is a proper rooted tree and return its leaf labels.

    Raises StructuralTreeError when a node is reachable twice (shared subtree or
    cycle) or a leaf is unnamed, and DuplicateLeafError on repeated labels.
    """
    seen: set[int] = set()
    labels: list[str] = []
    unnamed = 0
    stack: list[TreeNode] = [tree]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            raise StructuralTreeError(
                "Tree is not a rooted tree: a node is reachable through more than one "
                f"parent (node name={node.name!r})."
            )
        seen.add(id(node))
        if node.is_leaf:
            if node.name:
                labels.append(node.name)
            else:
                unnamed += 1
        stack.extend(reversed(node.children))

    if unnamed:
        raise StructuralTreeError(f"{unnamed} leaf node(s) have no name.")
    counts = Counter(labels)
    duplicates = {label: n for label, n in counts.items() if n > 1}
    if duplicates:
        raise DuplicateLeafError(duplicates)
    return labels


def _prune(tree: TreeNode, drop: set[str]) -> TreeNode | None:
    # Postorder walk; ``tree`` has already passed validate_tree, so node ids are unique.
    pruned: dict[int, TreeNode | None] = {}
    stack: list[tuple[TreeNode, bool]] = [(tree, False)]
    while stack:
        node, expanded = stack.pop()
        if node.is_leaf:
            if node.name in drop:
                pruned[id(node)] = None
            else:
                pruned[id(node)] = TreeNode(name=node.name, length=float(node.length))
            continue
        if not expanded:
            stack.append((node, True))
            stack.extend((child, False) for child in node.children)
            continue

        kept = [pruned.pop(id(child)) for child in node.children]
        kept = [child for child in kept if child is not None]
        if not kept:
            pruned[id(node)] = None
        elif len(kept) == 1 and len(node.children) > 1:
            # Unary after pruning: fold this node's edge into the survivor.
            survivor = kept[0]
            survivor.length = float(node.length) + float(survivor.length)
            pruned[id(node)] = survivor
        else:
            pruned[id(node)] = TreeNode(name=node.name, length=float(node.length), children=kept)
    return pruned[id(tree)]


def prune_tree(tree: TreeNode, labels: Iterable[str]) -> TreeNode:
    """Return a copy of ``tree`` without the leaves named in ``labels``.

    Parents left with a single child are collapsed and their edge length is
    added to the child, so surviving root-to-tip distances are unchanged.
    """
    drop = set(labels)
    present = set(validate_tree(tree))
    unknown = drop - present
    if unknown:
        raise MissingLabelError(unknown)
    if not drop:
        return tree.copy()
    pruned = _prune(tree, drop)
    if pruned is None:
        raise EmptyIntersectionError(n_leaves=len(present), n_rows=0)
    return pruned
