from __future__ import annotations

from io import StringIO
from pathlib import Path
from typing import Iterable

import pandas as pd
from Bio import Phylo
from Bio.Phylo.BaseTree import Clade, Tree

from .errors import MissingColumnError
from .phylo import TreeNode

TREE_FORMATS = ("newick", "nexus")
BRANCH_LENGTH_FORMAT = "%.12g"
DEFAULT_NA_VALUES = ("NA", "")


def _check_format(tree_format: str) -> str:
    fmt = tree_format.lower()
    if fmt not in TREE_FORMATS:
        raise ValueError(f"Unsupported tree format: {tree_format}. Use one of {', '.join(TREE_FORMATS)}.")
    return fmt


def tree_from_clade(clade: Clade) -> TreeNode:
    """Convert a Bio.Phylo clade (and its descendants) to a TreeNode."""
    root = TreeNode(name=clade.name, length=float(clade.branch_length or 0.0))
    stack: list[tuple[Clade, TreeNode]] = [(clade, root)]
    while stack:
        source, target = stack.pop()
        for child in source.clades:
            node = TreeNode(name=child.name, length=float(child.branch_length or 0.0))
            target.children.append(node)
            stack.append((child, node))
    return root


def tree_to_phylo(tree: TreeNode) -> Tree:
    root = Clade(branch_length=float(tree.length) if tree.length else None, name=tree.name)
    stack: list[tuple[TreeNode, Clade]] = [(tree, root)]
    while stack:
        source, target = stack.pop()
        for child in source.children:
            clade = Clade(branch_length=float(child.length), name=child.name)
            target.clades.append(clade)
            stack.append((child, clade))
    return Tree(root=root, rooted=True)


def parse_tree(text: str, tree_format: str = "newick") -> TreeNode:
    """Parse a tree held in a string (e.g. a Newick literal)."""
    fmt = _check_format(tree_format)
    text = text.strip()
    if not text:
        raise ValueError("Tree text is empty.")
    return tree_from_clade(Phylo.read(StringIO(text), fmt).root)


def read_tree(path: str | Path, tree_format: str = "newick") -> TreeNode:
    """Read the single tree stored in a Newick or NEXUS file."""
    path = Path(path)
    fmt = _check_format(tree_format)
    if not path.exists():
        raise FileNotFoundError(f"Tree file not found: {path}")
    trees = list(Phylo.parse(str(path), fmt))
    if not trees:
        raise ValueError(f"No tree found in {path}")
    if len(trees) > 1:
        raise ValueError(f"{path} holds {len(trees)} trees; expected exactly one.")
    return tree_from_clade(trees[0].root)


def write_tree(tree: TreeNode, path: str | Path, tree_format: str = "newick") -> Path:
    path = Path(path)
    fmt = _check_format(tree_format)
    path.parent.mkdir(parents=True, exist_ok=True)
    Phylo.write(tree_to_phylo(tree), str(path), fmt, format_branch_length=BRANCH_LENGTH_FORMAT)
    return path


def read_table(
    path: str | Path,
    key_column: str,
    *,
    delimiter: str = ",",
    na_values: Iterable[str] = DEFAULT_NA_VALUES,
) -> pd.DataFrame:
    """Read a delimited trait table; the key column is kept as strings."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    header = pd.read_csv(path, sep=delimiter, nrows=0)
    if key_column not in header.columns:
        raise MissingColumnError([key_column], [str(c) for c in header.columns])
    return pd.read_csv(
        path,
        sep=delimiter,
        dtype={key_column: str},
        na_values=list(na_values),
        keep_default_na=True,
    )


def write_table(data: pd.DataFrame, path: str | Path, *, delimiter: str = ",") -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data.to_csv(path, sep=delimiter, index=False, na_rep="NA")
    return path
