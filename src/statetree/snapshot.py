"""
Snapshot protocol: derive plain values from a subtree and apply them back.

get_snapshot_from_node() is pure. It never mutates the tree and never fires
listeners, and it terminates on resolved-reference cycles because references
serialize as their identifier, not as the target.
"""

from collections.abc import Mapping
from typing import Any, TYPE_CHECKING

from statetree.errors import DeadNodeError, ValidationError
from statetree.kinds import NodeKind

if TYPE_CHECKING:
    from statetree.node import StateTreeNode


def get_entry_snapshot(node: 'StateTreeNode', key: str, raw: Any) -> Any:
    """Snapshot of the collection entry under ``key``; ``raw`` when it has no child node."""
    child = node.get_child(key)
    return get_snapshot_from_node(child) if child is not None else raw


def get_snapshot_from_node(node: 'StateTreeNode') -> Any:
    """Plain, serializable value for ``node``'s subtree, dispatched by node kind."""
    kind = node.kind

    if kind is NodeKind.MODEL:
        snapshot = {key: get_snapshot_from_node(child) for key, child in node.get_children().items()}
        if node.post_processor is not None:
            return node.post_processor(snapshot)
        return snapshot

    if kind is NodeKind.ARRAY:
        items = node.get_value() or []
        return [get_entry_snapshot(node, str(index), item) for index, item in enumerate(items)]

    if kind is NodeKind.MAP:
        entries = node.get_value() or {}
        return {key: get_entry_snapshot(node, key, item) for key, item in entries.items()}

    # REFERENCE nodes store the identifier; SCALAR nodes store the raw value
    return node.get_value()


def apply_snapshot_to_node(node: 'StateTreeNode', snapshot: Any) -> None:
    """Apply a plain value onto ``node``'s subtree.

    Records merge: only children whose key is present in ``snapshot`` are
    touched. Lists, dictionaries, references and scalars are replaced
    wholesale through set_value(), which lets collection wrappers reconcile
    their children.

    Raises:
        DeadNodeError: ``node`` has been destroyed.
        ValidationError: a record is given something other than a mapping.
    """
    if not node.is_alive:
        raise DeadNodeError(node.type_name, node.path, action="apply a snapshot to")

    if node.pre_processor is not None:
        snapshot = node.pre_processor(snapshot)

    if node.kind is NodeKind.MODEL:
        if not isinstance(snapshot, Mapping):
            raise ValidationError(
                f"Snapshot {snapshot!r} for '{node.type_name}' at '{node.path or '/'}' must be a mapping"
            )
        for key, child in list(node.get_children().items()):
            if key in snapshot:
                apply_snapshot_to_node(child, snapshot[key])
        return

    node.set_value(snapshot)
