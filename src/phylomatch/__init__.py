"""phylomatch package."""

from .checks import TreeHealth, check_tree, force_ultrametric
from .errors import (
    DuplicateKeyError,
    DuplicateLeafError,
    EmptyIntersectionError,
    KeyTypeError,
    MissingColumnError,
    MissingLabelError,
    PhyloMatchError,
    StructuralTreeError,
    UltrametricCoercionError,
)
from .phylo import TreeNode, prune_tree, validate_tree
from .reconcile import (
    IncompleteCaseReport,
    MismatchReport,
    ReconciledPair,
    reconcile,
    subset_complete,
)

__all__ = [
    "DuplicateKeyError",
    "DuplicateLeafError",
    "EmptyIntersectionError",
    "IncompleteCaseReport",
    "KeyTypeError",
    "MismatchReport",
    "MissingColumnError",
    "MissingLabelError",
    "PhyloMatchError",
    "ReconciledPair",
    "StructuralTreeError",
    "TreeHealth",
    "TreeNode",
    "UltrametricCoercionError",
    "check_tree",
    "force_ultrametric",
    "prune_tree",
    "reconcile",
    "subset_complete",
    "validate_tree",
]

__version__ = "0.1.0"
