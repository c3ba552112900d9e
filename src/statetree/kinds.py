"""Node shape kinds and the minimal type descriptor the core dispatches on."""

from dataclasses import dataclass
from enum import Enum

# Attribute under which modeling-layer instances expose their node
NODE_ATTR = '__statetree_node__'


class NodeKind(Enum):
    """Shape of a node, used for snapshot/patch dispatch."""
    MODEL = "model"
    ARRAY = "array"
    MAP = "map"
    REFERENCE = "reference"
    SCALAR = "scalar"


@dataclass(frozen=True)
class TypeDescriptor:
    """Opaque tag identifying a node's shape and human-readable type name.

    Modeling-layer types expose the same two attributes (``kind`` and ``name``)
    and can be handed to StateTreeNode directly.
    """
    kind: NodeKind
    name: str


def is_collection(kind: NodeKind) -> bool:
    return kind in (NodeKind.ARRAY, NodeKind.MAP)


def is_leaf(kind: NodeKind) -> bool:
    """Leaf nodes store their value directly and have no children."""
    return kind in (NodeKind.SCALAR, NodeKind.REFERENCE)
