"""
Process-wide registries for the state tree.

NodeRegistry: global node_id -> node index. Used for diagnostics and stale
entry cleanup only, never for correctness-critical lookups.

IdentifierRegistry: type name -> identifier -> node. Backs reference
resolution. A node is removed explicitly when it is destroyed or when its
identifier binding changes.

TypeRegistry: type name -> modeling-layer type, for late (name-based) type
resolution.

All registries hold weakref handles, so they are never the sole owner of a
node. Explicit removal is the correctness path; the weakref callbacks only
sweep entries for nodes that were dropped without being destroyed.

Thread safety: not thread-safe (single mutator at a time).
"""

import asyncio
import itertools
import logging
import time
import weakref
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from statetree.config import get_tree_config
from statetree.errors import RegistrationTimeoutError, TypeRegistrationError

if TYPE_CHECKING:
    from statetree.node import StateTreeNode

logger = logging.getLogger(__name__)

Identifier = Any  # str or int in practice


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


class NodeRegistry:
    """Global index of every constructed node, keyed by node_id."""

    _nodes: Dict[str, 'weakref.ref[StateTreeNode]'] = {}
    _counter = itertools.count(1)

    @classmethod
    def next_id(cls) -> str:
        """Process-unique id: monotonic counter + creation timestamp."""
        return f"node_{next(cls._counter)}_{_base36(int(time.time() * 1000))}"

    @classmethod
    def add(cls, node: 'StateTreeNode') -> None:
        node_id = node.node_id

        def _on_collected(ref: 'weakref.ref[StateTreeNode]') -> None:
            # Only drop the entry if it still belongs to the collected node
            if cls._nodes.get(node_id) is ref:
                del cls._nodes[node_id]

        cls._nodes[node_id] = weakref.ref(node, _on_collected)

    @classmethod
    def remove(cls, node: 'StateTreeNode') -> None:
        cls._nodes.pop(node.node_id, None)

    @classmethod
    def get(cls, node_id: str) -> Optional['StateTreeNode']:
        ref = cls._nodes.get(node_id)
        return ref() if ref is not None else None

    @classmethod
    def size(cls) -> int:
        return len(cls._nodes)

    @classmethod
    def cleanup_stale_entries(cls) -> int:
        """Drop entries whose node is gone or dead. Returns the number removed."""
        cleaned = 0
        for node_id, ref in list(cls._nodes.items()):
            node = ref()
            if node is None or not node.is_alive:
                del cls._nodes[node_id]
                cleaned += 1
        cleaned += IdentifierRegistry.cleanup_stale_entries()
        if cleaned:
            logger.debug(f"Cleaned {cleaned} stale registry entries")
        return cleaned

    @classmethod
    def get_stats(cls) -> Dict[str, int]:
        """Registry statistics, useful for spotting leaks."""
        live = 0
        stale = 0
        for ref in cls._nodes.values():
            node = ref()
            if node is not None and node.is_alive:
                live += 1
            else:
                stale += 1
        return {
            'node_registry_size': len(cls._nodes),
            'identifier_registry_size': IdentifierRegistry.live_count(),
            'identifier_type_count': IdentifierRegistry.type_count(),
            'live_node_count': live,
            'stale_node_count': stale,
        }

    @classmethod
    def clear(cls) -> None:
        """Mark every tracked node dead and forget it. For testing only."""
        for ref in cls._nodes.values():
            node = ref()
            if node is not None:
                node.is_alive = False
        cls._nodes.clear()
        cls._counter = itertools.count(1)


class IdentifierRegistry:
    """Type-partitioned index from declared identifier to the live node owning it."""

    _index: Dict[str, Dict[Identifier, 'weakref.ref[StateTreeNode]']] = {}

    # Pending async waits keyed by (type_name, identifier)
    _waiters: Dict[Tuple[str, Identifier], List[asyncio.Future]] = {}

    @classmethod
    def register(cls, node: 'StateTreeNode', type_name: str, identifier: Identifier) -> None:
        partition = cls._index.setdefault(type_name, {})
        existing_ref = partition.get(identifier)
        existing = existing_ref() if existing_ref is not None else None
        if existing is not None and existing is not node and existing.is_alive:
            logger.warning(
                f"Overwriting identifier binding {type_name}:{identifier!r} "
                f"(was {existing.node_id}, now {node.node_id})"
            )

        def _on_collected(ref: 'weakref.ref[StateTreeNode]') -> None:
            current = cls._index.get(type_name)
            if current is not None and current.get(identifier) is ref:
                del current[identifier]
                if not current:
                    del cls._index[type_name]

        partition[identifier] = weakref.ref(node, _on_collected)
        logger.debug(f"Registered identifier {type_name}:{identifier!r} -> {node.node_id}")
        cls._wake_waiters(type_name, identifier, node)

    @classmethod
    def unregister(cls, node: 'StateTreeNode', type_name: str, identifier: Identifier) -> None:
        """Remove the binding if it still points at ``node``; prune empty partitions."""
        partition = cls._index.get(type_name)
        if partition is None:
            return
        ref = partition.get(identifier)
        if ref is not None and ref() is node:
            del partition[identifier]
            logger.debug(f"Unregistered identifier {type_name}:{identifier!r}")
        if not partition:
            del cls._index[type_name]

    @classmethod
    def resolve(cls, type_name: str, identifier: Identifier) -> Optional['StateTreeNode']:
        """Synchronous lookup. None when nothing live is registered under the key."""
        partition = cls._index.get(type_name)
        if partition is None:
            return None
        ref = partition.get(identifier)
        node = ref() if ref is not None else None
        if node is None or not node.is_alive:
            return None
        return node

    @classmethod
    def get_nodes_of_type(cls, type_name: str) -> List['StateTreeNode']:
        partition = cls._index.get(type_name, {})
        nodes = []
        for ref in partition.values():
            node = ref()
            if node is not None and node.is_alive:
                nodes.append(node)
        return nodes

    @classmethod
    async def wait_for(
        cls,
        type_name: str,
        identifier: Identifier,
        timeout: Optional[float] = None,
    ) -> 'StateTreeNode':
        """Resolve now, or wait until a node registers under (type_name, identifier).

        Raises:
            RegistrationTimeoutError: nothing registered before ``timeout`` seconds.
        """
        node = cls.resolve(type_name, identifier)
        if node is not None:
            return node

        if timeout is None:
            timeout = get_tree_config().registration_timeout

        key = (type_name, identifier)
        future = asyncio.get_running_loop().create_future()
        cls._waiters.setdefault(key, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RegistrationTimeoutError(
                f"identifier {identifier!r} of type '{type_name}'", timeout
            ) from None
        finally:
            pending = cls._waiters.get(key)
            if pending is not None and future in pending:
                pending.remove(future)
                if not pending:
                    del cls._waiters[key]

    @classmethod
    def _wake_waiters(cls, type_name: str, identifier: Identifier, node: 'StateTreeNode') -> None:
        for future in cls._waiters.pop((type_name, identifier), []):
            if not future.done():
                future.set_result(node)

    @classmethod
    def live_count(cls) -> int:
        return sum(
            1
            for partition in cls._index.values()
            for ref in partition.values()
            if ref() is not None and ref().is_alive
        )

    @classmethod
    def type_count(cls) -> int:
        return len(cls._index)

    @classmethod
    def cleanup_stale_entries(cls) -> int:
        cleaned = 0
        for type_name, partition in list(cls._index.items()):
            for identifier, ref in list(partition.items()):
                node = ref()
                if node is None or not node.is_alive:
                    del partition[identifier]
                    cleaned += 1
            if not partition:
                del cls._index[type_name]
        return cleaned

    @classmethod
    def clear(cls) -> None:
        cls._index.clear()
        for waiters in cls._waiters.values():
            for future in waiters:
                if not future.done():
                    future.cancel()
        cls._waiters.clear()


class TypeRegistry:
    """Name -> modeling-layer type registry for late, name-based resolution."""

    _types: Dict[str, Tuple[Any, Optional[Dict[str, Any]]]] = {}
    _waiters: Dict[str, List[asyncio.Future]] = {}

    # Callbacks receive (name, type)
    _on_register_callbacks: List[Callable[[str, Any], None]] = []

    @classmethod
    def add_register_callback(cls, callback: Callable[[str, Any], None]) -> Callable[[], None]:
        """Subscribe to type registration events. Returns a disposer."""
        if callback not in cls._on_register_callbacks:
            cls._on_register_callbacks.append(callback)
        return lambda: cls.remove_register_callback(callback)

    @classmethod
    def remove_register_callback(cls, callback: Callable[[str, Any], None]) -> None:
        if callback in cls._on_register_callbacks:
            cls._on_register_callbacks.remove(callback)

    @classmethod
    def _fire_register_callbacks(cls, name: str, type_: Any) -> None:
        for callback in list(cls._on_register_callbacks):
            try:
                callback(name, type_)
            except Exception as e:
                logger.warning(f"Error in type register callback: {e}")

    @classmethod
    def register(cls, name: str, type_: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        if name in cls._types:
            raise TypeRegistrationError(
                f"Type '{name}' is already registered; unregister it first to replace it"
            )
        cls._types[name] = (type_, metadata)
        logger.debug(f"Registered type: {name}")

        for future in cls._waiters.pop(name, []):
            if not future.done():
                future.set_result(type_)
        cls._fire_register_callbacks(name, type_)

    @classmethod
    def unregister(cls, name: str) -> bool:
        return cls._types.pop(name, None) is not None

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._types

    @classmethod
    def resolve(cls, name: str) -> Any:
        entry = cls._types.get(name)
        if entry is None:
            raise TypeRegistrationError(
                f"Type '{name}' is not registered; call TypeRegistry.register('{name}', ...) first"
            )
        return entry[0]

    @classmethod
    def try_resolve(cls, name: str) -> Optional[Any]:
        entry = cls._types.get(name)
        return entry[0] if entry is not None else None

    @classmethod
    def get_metadata(cls, name: str) -> Optional[Dict[str, Any]]:
        entry = cls._types.get(name)
        return entry[1] if entry is not None else None

    @classmethod
    def get_names(cls) -> List[str]:
        return list(cls._types.keys())

    @classmethod
    async def resolve_async(cls, name: str, timeout: Optional[float] = None) -> Any:
        """Resolve a type, waiting for it to be registered if necessary."""
        type_ = cls.try_resolve(name)
        if type_ is not None:
            return type_

        if timeout is None:
            timeout = get_tree_config().registration_timeout

        future = asyncio.get_running_loop().create_future()
        cls._waiters.setdefault(name, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RegistrationTimeoutError(f"type '{name}'", timeout) from None
        finally:
            pending = cls._waiters.get(name)
            if pending is not None and future in pending:
                pending.remove(future)
                if not pending:
                    del cls._waiters[name]

    @classmethod
    def clear(cls) -> None:
        cls._types.clear()
        for waiters in cls._waiters.values():
            for future in waiters:
                if not future.done():
                    future.cancel()
        cls._waiters.clear()
        cls._on_register_callbacks.clear()


def clear_all_registries() -> None:
    """Reset every registry. For testing only."""
    NodeRegistry.clear()
    IdentifierRegistry.clear()
    TypeRegistry.clear()
    logger.debug("Cleared all registries")
