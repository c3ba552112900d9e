"""
StateTreeNode: the atomic unit of tree structure.

A node wraps a StorageCell and tracks its parent, children, path,
environment and liveness. It owns three listener sets:

- patch listeners: receive ``(patch, inverse_patch)``; notification bubbles
  from the mutated node through every ancestor
- snapshot listeners: receive the root snapshot; only notified at the root
- lifecycle listeners: receive ``False`` when the node is destroyed

The modeling layer builds nodes through this constructor and, for
collections, installs a ``reconciler`` that turns a replaced list/dict value
into reconciled children.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from statetree.cell import Disposer, StorageCell
from statetree.errors import DeadNodeError, StateTreeError
from statetree.kinds import NODE_ATTR, NodeKind, is_collection
from statetree.lifecycle import LifecycleHooks, run_hook
from statetree.patch import JsonPatch, ReversibleJsonPatch, remove_collection_entry
from statetree.path import child_path
from statetree.registry import IdentifierRegistry, NodeRegistry
from statetree.snapshot import get_snapshot_from_node

logger = logging.getLogger(__name__)

PatchListener = Callable[[JsonPatch, ReversibleJsonPatch], None]
SnapshotListener = Callable[[Any], None]
LifecycleListener = Callable[[bool], None]


def _subscribe(listeners: List[Callable], listener: Callable) -> Disposer:
    listeners.append(listener)

    def dispose() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return dispose


class StateTreeNode:
    """One node of a state tree.

    Args:
        type_: anything exposing ``kind`` (NodeKind) and ``name``
        initial_value: raw value stored in the node's cell
        env: environment; inherited from ``parent`` when omitted
        parent: optional parent to attach to under ``key``
        key: child key under ``parent``
    """

    def __init__(
        self,
        type_: Any,
        initial_value: Any = None,
        env: Any = None,
        parent: Optional['StateTreeNode'] = None,
        key: Optional[str] = None,
    ):
        self.node_id = NodeRegistry.next_id()
        self.created_at = time.time()
        self.type = type_
        self.parent: Optional[StateTreeNode] = None
        self.path = ""
        self.env = env if env is not None or parent is None else parent.env
        self.is_alive = True

        self.cell = StorageCell(initial_value)
        self._children: Dict[str, StateTreeNode] = {}

        self._patch_listeners: List[PatchListener] = []
        self._snapshot_listeners: List[SnapshotListener] = []
        self._lifecycle_listeners: List[LifecycleListener] = []

        self.volatile: Dict[str, Any] = {}
        self.pre_processor: Optional[Callable[[Any], Any]] = None
        self.post_processor: Optional[Callable[[Any], Any]] = None

        self.identifier_type_name: Optional[str] = None
        self.identifier_value: Any = None

        # Collection sync callback: new raw value -> stored value
        self.reconciler: Optional[Callable[[Any], Any]] = None
        self.hooks = LifecycleHooks()
        # Modeling-layer object wrapping this node
        self.instance: Any = None

        NodeRegistry.add(self)

        if parent is not None:
            parent.add_child(key, self)

    # ========== TYPE ==========

    @property
    def kind(self) -> NodeKind:
        return self.type.kind

    @property
    def type_name(self) -> str:
        return self.type.name

    # ========== VALUE ==========

    def get_value(self) -> Any:
        return self.cell.get()

    def set_value(self, value: Any) -> None:
        """Replace the value and emit a ``replace`` patch at this node's path."""
        self.write(value)

    def write(
        self,
        value: Any,
        patch: Optional[JsonPatch] = None,
        inverse_patch: Optional[ReversibleJsonPatch] = None,
    ) -> None:
        """Write the cell and run one full notification cycle.

        When ``patch`` is omitted a ``replace`` patch and its inverse are
        synthesized from the snapshots before and after the write.
        """
        if not self.is_alive:
            raise DeadNodeError(self.type_name, self.path)

        synthesize = patch is None
        if synthesize:
            old_snapshot = get_snapshot_from_node(self)

        if self.reconciler is not None:
            value = self.reconciler(value)
        self.cell.set(value)

        if synthesize:
            new_snapshot = get_snapshot_from_node(self)
            patch = JsonPatch('replace', self.path, new_snapshot)
            inverse_patch = ReversibleJsonPatch('replace', self.path, old_snapshot, old_snapshot)

        self._notify_patch(patch, inverse_patch)
        self._notify_snapshot()

    # ========== STRUCTURE ==========

    def get_root(self) -> 'StateTreeNode':
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def get_child(self, key: str) -> Optional['StateTreeNode']:
        return self._children.get(str(key))

    def get_children(self) -> Dict[str, 'StateTreeNode']:
        """Live view of the child mapping. Callers must not mutate it."""
        return self._children

    def key_of(self, child: 'StateTreeNode') -> Optional[str]:
        for key, node in self._children.items():
            if node is child:
                return key
        return None

    @property
    def key(self) -> Optional[str]:
        return self.parent.key_of(self) if self.parent is not None else None

    def is_ancestor_of(self, other: 'StateTreeNode') -> bool:
        node = other.parent
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def add_child(self, key: Any, child: 'StateTreeNode') -> None:
        """Attach ``child`` under ``key``.

        A child owned by another parent is detached from it first. A
        different node already occupying ``key`` is destroyed.

        Raises:
            DeadNodeError: this node or ``child`` has been destroyed.
            StateTreeError: attaching would create a cycle.
        """
        key = str(key)
        if not self.is_alive:
            raise DeadNodeError(self.type_name, self.path, action="attach a child to")
        if not child.is_alive:
            raise DeadNodeError(child.type_name, child.path, action="attach")
        if child is self or child.is_ancestor_of(self):
            raise StateTreeError(
                f"Cannot attach node {child.node_id} under its own subtree at '{child_path(self.path, key)}'"
            )

        existing = self._children.get(key)
        if existing is child:
            return

        # Moving within the same parent (collection reindexing) runs no hooks
        rekeyed = child.parent is self
        if rekeyed:
            old_key = self.key_of(child)
            if old_key is not None:
                del self._children[old_key]
        elif child.parent is not None:
            previous = child.parent
            previous_key = previous.key_of(child)
            if previous_key is not None and previous.is_alive and is_collection(previous.kind):
                # The previous list/dictionary must drop its entry as well
                remove_collection_entry(previous, previous_key, detach=True)
            else:
                child.detach()

        if existing is not None:
            existing.destroy()

        child.parent = self
        if child.env is None:
            child.env = self.env
        self._children[key] = child
        child._update_paths(child_path(self.path, key))

        if not rekeyed:
            run_hook(child, 'after_attach')

    def remove_child(self, key: Any) -> None:
        """Remove and destroy the child under ``key`` (no-op when absent)."""
        child = self._children.get(str(key))
        if child is not None:
            child.destroy()

    def clear_children(self) -> None:
        """Forget every child without destroying it. Used by collection reconcilers."""
        self._children.clear()

    def detach(self) -> None:
        """Remove this node from its parent without destroying it.

        The node becomes a root with path ``""``; its subtree paths are
        re-derived. No-op for a root.
        """
        if self.parent is None:
            return
        run_hook(self, 'before_detach')
        parent = self.parent
        key = parent.key_of(self)
        if key is not None:
            del parent._children[key]
        self.parent = None
        self._update_paths("")
        logger.debug(f"Detached {self.node_id} from {parent.node_id}")

    def _update_paths(self, path: str) -> None:
        self.path = path
        stack = [self]
        while stack:
            node = stack.pop()
            for key, child in node._children.items():
                child.path = child_path(node.path, key)
                stack.append(child)

    # ========== IDENTIFIER ==========

    def register_identifier(self, type_name: str, identifier: Any) -> None:
        """Bind this node to (type_name, identifier), replacing any previous binding."""
        if self.identifier_type_name == type_name and self.identifier_value == identifier:
            IdentifierRegistry.register(self, type_name, identifier)
            return
        self.unregister_identifier()
        self.identifier_type_name = type_name
        self.identifier_value = identifier
        IdentifierRegistry.register(self, type_name, identifier)

    def unregister_identifier(self) -> None:
        if self.identifier_type_name is None:
            return
        IdentifierRegistry.unregister(self, self.identifier_type_name, self.identifier_value)
        self.identifier_type_name = None
        self.identifier_value = None

    # ========== LISTENERS ==========

    def on_patch(self, listener: PatchListener) -> Disposer:
        return _subscribe(self._patch_listeners, listener)

    def on_snapshot(self, listener: SnapshotListener) -> Disposer:
        return _subscribe(self._snapshot_listeners, listener)

    def on_lifecycle_change(self, listener: LifecycleListener) -> Disposer:
        return _subscribe(self._lifecycle_listeners, listener)

    def _notify_patch(self, patch: JsonPatch, inverse_patch: ReversibleJsonPatch) -> None:
        node = self
        while node is not None:
            for listener in list(node._patch_listeners):
                listener(patch, inverse_patch)
            node = node.parent

    def _notify_snapshot(self) -> None:
        root = self.get_root()
        if not root._snapshot_listeners:
            return
        snapshot = get_snapshot_from_node(root)
        for listener in list(root._snapshot_listeners):
            listener(snapshot)

    def notify_volatile_change(self) -> None:
        """Volatile state changed: snapshot listeners are told, no patch is emitted."""
        self._notify_snapshot()

    # ========== DESTRUCTION ==========

    def destroy(self) -> None:
        """Destroy this node and its subtree. Idempotent.

        Order: before_destroy hook, children depth-first, identifier binding,
        node registry entry, liveness flag, lifecycle listeners, then every
        listener set is cleared. A node still listed by a live parent is
        removed from that parent's child mapping.
        """
        if not self.is_alive:
            return

        run_hook(self, 'before_destroy')

        for child in list(self._children.values()):
            child.destroy()
        self._children.clear()

        parent = self.parent
        if parent is not None:
            key = parent.key_of(self)
            if key is not None:
                del parent._children[key]
            self.parent = None

        self.unregister_identifier()
        NodeRegistry.remove(self)
        self.is_alive = False

        for listener in list(self._lifecycle_listeners):
            listener(False)

        self._patch_listeners.clear()
        self._snapshot_listeners.clear()
        self._lifecycle_listeners.clear()
        self.cell.clear_subscribers()
        logger.debug(f"Destroyed node {self.node_id} ({self.type_name})")

    def __repr__(self) -> str:
        state = "alive" if self.is_alive else "dead"
        return f"StateTreeNode({self.type_name!r}, path={self.path!r}, {state})"


def is_state_tree_node(target: Any) -> bool:
    if isinstance(target, StateTreeNode):
        return True
    return isinstance(getattr(target, NODE_ATTR, None), StateTreeNode)


def get_state_tree_node(target: Any) -> StateTreeNode:
    """Return the node behind ``target`` (a node or a modeling-layer instance).

    Raises:
        TypeError: ``target`` is neither.
    """
    if isinstance(target, StateTreeNode):
        return target
    node = getattr(target, NODE_ATTR, None)
    if isinstance(node, StateTreeNode):
        return node
    raise TypeError(f"Value is not a state tree node: {target!r}")
