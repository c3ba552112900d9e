"""
Public tree API.

Every function accepts either a StateTreeNode or a modeling-layer instance
(anything exposing ``__statetree_node__``). Functions that return tree members
return the modeling-layer instance when one exists, otherwise the node.
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from statetree.cell import Disposer
from statetree.errors import InvalidPathError, StateTreeError
from statetree.kinds import is_collection
from statetree.node import StateTreeNode, get_state_tree_node, is_state_tree_node
from statetree.patch import PatchLike, PatchRecorder, apply_patches, remove_collection_entry
from statetree.path import split_path
from statetree.references import resolve_identifier as _resolve_identifier
from statetree.snapshot import apply_snapshot_to_node, get_snapshot_from_node

logger = logging.getLogger(__name__)

__all__ = [
    'get_snapshot', 'apply_snapshot', 'on_snapshot', 'on_patch', 'apply_patch',
    'record_patches', 'destroy', 'detach', 'resolve_identifier',
    'get_root', 'get_parent', 'try_get_parent', 'has_parent', 'get_parent_of_type',
    'get_path', 'get_path_parts', 'get_env', 'is_alive', 'is_root', 'get_type',
    'get_identifier', 'is_state_tree_node', 'get_state_tree_node', 'walk',
    'resolve_path', 'try_resolve', 'get_relative_path', 'is_ancestor',
    'have_same_root', 'find_all', 'find_first', 'get_tree_stats', 'clone',
    'get_members', 'on_lifecycle_change',
]


def _public(node: StateTreeNode) -> Any:
    return node.instance if node.instance is not None else node


# ========== SNAPSHOTS & PATCHES ==========

def get_snapshot(target: Any) -> Any:
    return get_snapshot_from_node(get_state_tree_node(target))


def apply_snapshot(target: Any, snapshot: Any) -> None:
    apply_snapshot_to_node(get_state_tree_node(target), snapshot)


def on_snapshot(target: Any, listener: Callable[[Any], None]) -> Disposer:
    """Subscribe to snapshots of ``target``.

    Snapshot notifications are delivered at the root only, once per change
    anywhere in the tree; a listener on a non-root node is not called.
    """
    return get_state_tree_node(target).on_snapshot(listener)


def on_patch(target: Any, listener: Callable) -> Disposer:
    """Subscribe to ``(patch, inverse_patch)`` for changes in ``target``'s subtree."""
    return get_state_tree_node(target).on_patch(listener)


def on_lifecycle_change(target: Any, listener: Callable[[bool], None]) -> Disposer:
    return get_state_tree_node(target).on_lifecycle_change(listener)


def apply_patch(target: Any, patch: Union[PatchLike, List[PatchLike]]) -> None:
    """Apply one patch or a list of patches, resolving paths from the root."""
    apply_patches(get_state_tree_node(target).get_root(), patch)


def record_patches(target: Any) -> PatchRecorder:
    return PatchRecorder(get_state_tree_node(target))


# ========== LIFECYCLE ==========

def destroy(target: Any) -> None:
    """Destroy ``target``. A list/dict element is removed from its collection
    (emitting a ``remove`` patch) and destroyed by the collection."""
    node = get_state_tree_node(target)
    parent = node.parent
    if parent is not None and parent.is_alive and is_collection(parent.kind):
        remove_collection_entry(parent, node.key)
        return
    node.destroy()


def detach(target: Any) -> Any:
    """Detach ``target`` from its parent, keeping it alive as a new root."""
    node = get_state_tree_node(target)
    parent = node.parent
    if parent is not None and parent.is_alive and is_collection(parent.kind):
        remove_collection_entry(parent, node.key, detach=True)
    else:
        node.detach()
    return target


def resolve_identifier(type_: Any, identifier: Any) -> Optional[StateTreeNode]:
    """Live node registered under (type, identifier), or None."""
    type_name = type_ if isinstance(type_, str) else type_.name
    return _resolve_identifier(type_name, identifier)


# ========== NAVIGATION ==========

def get_root(target: Any) -> Any:
    return _public(get_state_tree_node(target).get_root())


def _ancestor(target: Any, depth: int) -> Optional[StateTreeNode]:
    node: Optional[StateTreeNode] = get_state_tree_node(target)
    for _ in range(depth):
        node = node.parent if node is not None else None
    return node


def get_parent(target: Any, depth: int = 1) -> Any:
    """Ancestor ``depth`` levels up.

    Raises:
        StateTreeError: there is no such ancestor.
    """
    node = _ancestor(target, depth)
    if node is None:
        raise StateTreeError(
            f"Node '{get_state_tree_node(target).path}' has no parent at depth {depth}"
        )
    return _public(node)


def try_get_parent(target: Any, depth: int = 1) -> Any:
    node = _ancestor(target, depth)
    return _public(node) if node is not None else None


def has_parent(target: Any, depth: int = 1) -> bool:
    return _ancestor(target, depth) is not None


def get_parent_of_type(target: Any, type_: Any) -> Any:
    """Nearest ancestor whose type is ``type_`` (or carries its name)."""
    node = get_state_tree_node(target).parent
    while node is not None:
        if node.type is type_ or node.type_name == getattr(type_, 'name', type_):
            return _public(node)
        node = node.parent
    raise StateTreeError(f"No parent of type '{getattr(type_, 'name', type_)}' found")


def get_path(target: Any) -> str:
    return get_state_tree_node(target).path


def get_path_parts(target: Any) -> List[str]:
    return split_path(get_state_tree_node(target).path)


def get_env(target: Any) -> Any:
    return get_state_tree_node(target).env


def is_alive(target: Any) -> bool:
    return get_state_tree_node(target).is_alive


def is_root(target: Any) -> bool:
    return get_state_tree_node(target).is_root


def get_type(target: Any) -> Any:
    return get_state_tree_node(target).type


def get_identifier(target: Any) -> Any:
    return get_state_tree_node(target).identifier_value


def _iter_nodes(node: StateTreeNode) -> Iterator[StateTreeNode]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(current.get_children().values())))


def walk(target: Any, visitor: Callable[[Any], None]) -> None:
    """Call ``visitor`` on every instance in the subtree, parents before children.

    Scalar and reference nodes have no instance and are skipped.
    """
    for node in _iter_nodes(get_state_tree_node(target)):
        if node.instance is not None:
            visitor(node.instance)


def resolve_path(target: Any, path: str) -> Any:
    """Follow ``path`` from ``target``. ``..`` moves to the parent.

    Raises:
        InvalidPathError: a segment has no corresponding node.
    """
    node = get_state_tree_node(target)
    for segment in split_path(path):
        if segment == '.':
            continue
        if segment == '..':
            if node.parent is None:
                raise InvalidPathError(path, segment)
            node = node.parent
            continue
        child = node.get_child(segment)
        if child is None:
            raise InvalidPathError(path, segment)
        node = child
    if node.instance is not None:
        return node.instance
    return node.type.read(node) if hasattr(node.type, 'read') else node.get_value()


def try_resolve(target: Any, path: str) -> Any:
    try:
        return resolve_path(target, path)
    except InvalidPathError:
        return None


def get_relative_path(base: Any, target: Any) -> str:
    """Path from ``base`` to ``target`` using ``..`` segments ("." when equal)."""
    base_parts = get_path_parts(base)
    target_parts = get_path_parts(target)
    common = 0
    for left, right in zip(base_parts, target_parts):
        if left != right:
            break
        common += 1
    parts = [".."] * (len(base_parts) - common) + target_parts[common:]
    return "/".join(parts) or "."


def is_ancestor(ancestor: Any, target: Any) -> bool:
    return get_state_tree_node(ancestor).is_ancestor_of(get_state_tree_node(target))


def have_same_root(a: Any, b: Any) -> bool:
    return get_state_tree_node(a).get_root() is get_state_tree_node(b).get_root()


def find_all(target: Any, predicate: Callable[[Any], bool]) -> List[Any]:
    result = []
    walk(target, lambda instance: result.append(instance) if predicate(instance) else None)
    return result


def find_first(target: Any, predicate: Callable[[Any], bool]) -> Any:
    for node in _iter_nodes(get_state_tree_node(target)):
        if node.instance is not None and predicate(node.instance):
            return node.instance
    return None


def get_tree_stats(target: Any) -> Dict[str, Any]:
    """Node count, maximum depth below ``target`` and node count per type name."""
    root = get_state_tree_node(target)
    base_depth = len(split_path(root.path))
    node_count = 0
    depth = 0
    types: Dict[str, int] = {}
    for node in _iter_nodes(root):
        node_count += 1
        depth = max(depth, len(split_path(node.path)) - base_depth)
        types[node.type_name] = types.get(node.type_name, 0) + 1
    return {'node_count': node_count, 'depth': depth, 'types': types}


def clone(target: Any, keep_environment: bool = True) -> Any:
    """New independent tree of the same type built from ``target``'s snapshot."""
    node = get_state_tree_node(target)
    return node.type.create(get_snapshot_from_node(node), node.env if keep_environment else None)


def get_members(target: Any) -> Dict[str, Any]:
    """Declared fields, volatile state, views and actions of a model instance."""
    node = get_state_tree_node(target)
    instance = node.instance
    return {
        'name': node.type_name,
        'properties': list(node.get_children().keys()),
        'volatile': list(node.volatile.keys()),
        'views': list(getattr(instance, '_views', {}).keys()) if instance is not None else [],
        'actions': list(getattr(instance, '_actions', {}).keys()) if instance is not None else [],
    }
