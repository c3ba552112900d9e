"""
Modeling layer: declarative types that build state tree nodes.

Types produce values by calling the StateTreeNode constructor; collections
install a reconciler on their node that diffs the old children against a
replaced list/dict, reusing nodes for instances and unchanged scalar entries
and destroying children that disappear.

Example:
    Todo = model("Todo", id=identifier, title=string, done=False).actions(
        lambda self: {"toggle": lambda: setattr(self, "done", not self.done)}
    )
    Store = model("Store", todos=array(Todo), selected=safe_reference(Todo))

    store = Store.create({"todos": [{"id": "t1", "title": "write docs"}]})
    store.todos[0].toggle()
    store.selected = store.todos[0]

Model instances resolve attributes through a fixed capability table:
declared fields, then volatile state, then views, then actions.
"""

import copy
import dataclasses
import functools
import logging
from collections.abc import Mapping, MutableMapping, MutableSequence
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from statetree.actions import track_action
from statetree.errors import DeadNodeError, StateTreeError, ValidationError
from statetree.kinds import NodeKind, is_leaf
from statetree.lifecycle import LifecycleHooks, register_hooks, run_hook
from statetree.node import NODE_ATTR, StateTreeNode, get_state_tree_node, is_state_tree_node
from statetree.patch import JsonPatch, ReversibleJsonPatch
from statetree.path import child_path
from statetree.references import resolve_reference
from statetree.registry import TypeRegistry
from statetree.snapshot import apply_snapshot_to_node, get_snapshot_from_node

logger = logging.getLogger(__name__)


class BaseType:
    """Common protocol of every modeling-layer type.

    ``kind`` and ``name`` make a type usable as a node's type descriptor.
    """

    kind: NodeKind
    name: str

    def create(self, snapshot: Any = None, env: Any = None) -> Any:
        """Build a standalone value (an instance for models and collections)."""
        raise NotImplementedError

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        """Build (or adopt) the node that will hold ``value`` as a child."""
        raise NotImplementedError

    def read(self, node: StateTreeNode) -> Any:
        """Value seen when a field or item held by ``node`` is accessed."""
        return node.instance if node.instance is not None else node.get_value()

    def write(self, node: StateTreeNode, value: Any) -> None:
        """Assign ``value`` to the field or item held by ``node``."""
        node.set_value(value)

    def is_type(self, value: Any) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def _unwrap(type_: BaseType) -> BaseType:
    while isinstance(type_, (OptionalType, LateType)):
        type_ = type_.inner if isinstance(type_, OptionalType) else type_.resolved
    return type_


def _plain(value: Any) -> Any:
    """Instances become their snapshot; anything else passes through."""
    if is_state_tree_node(value):
        return get_snapshot_from_node(get_state_tree_node(value))
    return value


# ========== SCALARS ==========

class ScalarType(BaseType):
    """Primitive value type with a type check and a default for missing values."""

    kind = NodeKind.SCALAR

    def __init__(
        self,
        name: str,
        accepts: Optional[Tuple[type, ...]],
        default: Any = None,
        nullable: bool = False,
    ):
        self.name = name
        self.accepts = accepts
        self.default = default
        self.nullable = nullable

    def is_type(self, value: Any) -> bool:
        if value is None:
            return self.nullable
        if self.accepts is None:
            return True
        if isinstance(value, bool) and bool not in self.accepts:
            return False
        return isinstance(value, self.accepts)

    def prepare(self, value: Any) -> Any:
        """Validated raw value to store; ``None`` becomes the default unless nullable."""
        if value is None and not self.nullable:
            value = self.default
        if not self.is_type(value):
            raise ValidationError(f"Value {value!r} is not assignable to type '{self.name}'")
        return value

    def create(self, snapshot: Any = None, env: Any = None) -> Any:
        return self.prepare(snapshot)

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        return StateTreeNode(self, self.prepare(value), env)

    def read(self, node: StateTreeNode) -> Any:
        return node.get_value()

    def write(self, node: StateTreeNode, value: Any) -> None:
        node.set_value(self.prepare(value))


class IdentifierType(ScalarType):
    """Identifier field; a model with one registers its instances by it."""

    def __init__(self, name: str = "identifier", accepts: Tuple[type, ...] = (str, int)):
        super().__init__(name, accepts, default=None, nullable=True)


string = ScalarType("string", (str,), default="")
number = ScalarType("number", (int, float), default=0)
integer = ScalarType("integer", (int,), default=0)
boolean = ScalarType("boolean", (bool,), default=False)
frozen = ScalarType("frozen", None, default=None, nullable=True)
identifier = IdentifierType()
identifier_number = IdentifierType("identifier_number", (int,))


def maybe(type_: ScalarType) -> ScalarType:
    """Scalar type that also accepts ``None``."""
    if not isinstance(type_, ScalarType):
        raise TypeError(f"maybe() only wraps scalar types, got {type_!r}")
    return ScalarType(f"maybe<{type_.name}>", type_.accepts, default=None, nullable=True)


class OptionalType(BaseType):
    """Wraps a type with a default used when the incoming value is ``None``."""

    def __init__(self, inner: BaseType, default: Any):
        self.inner = inner
        self.default = default

    @property
    def kind(self) -> NodeKind:
        return self.inner.kind

    @property
    def name(self) -> str:
        return self.inner.name

    def _fill(self, value: Any) -> Any:
        if value is not None:
            return value
        return self.default() if callable(self.default) else copy.deepcopy(self.default)

    def prepare(self, value: Any) -> Any:
        return self.inner.prepare(self._fill(value))

    def create(self, snapshot: Any = None, env: Any = None) -> Any:
        return self.inner.create(self._fill(snapshot), env)

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        return self.inner.instantiate(self._fill(value), env)

    def read(self, node: StateTreeNode) -> Any:
        return self.inner.read(node)

    def write(self, node: StateTreeNode, value: Any) -> None:
        self.inner.write(node, value)

    def is_type(self, value: Any) -> bool:
        return value is None or self.inner.is_type(value)


def optional(type_: BaseType, default: Any) -> OptionalType:
    return OptionalType(type_, default)


def _as_type(value: Any) -> BaseType:
    """Literal property defaults become optional scalars (``done=False``)."""
    if isinstance(value, BaseType):
        return value
    if isinstance(value, bool):
        return OptionalType(boolean, value)
    if isinstance(value, (int, float)):
        return OptionalType(number, value)
    if isinstance(value, str):
        return OptionalType(string, value)
    raise TypeError(f"Cannot use {value!r} as a property type")


# ========== LATE TYPES ==========

class LateType(BaseType):
    """Type resolved on first use, by registered name or by a thunk."""

    def __init__(self, target: Union[str, Callable[[], BaseType]]):
        self._target = target

    @property
    def resolved(self) -> BaseType:
        if isinstance(self._target, str):
            return TypeRegistry.resolve(self._target)
        return self._target()

    @property
    def kind(self) -> NodeKind:
        return self.resolved.kind

    @property
    def name(self) -> str:
        if isinstance(self._target, str):
            return self._target
        return self.resolved.name

    def prepare(self, value: Any) -> Any:
        return self.resolved.prepare(value)

    def create(self, snapshot: Any = None, env: Any = None) -> Any:
        return self.resolved.create(snapshot, env)

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        return self.resolved.instantiate(value, env)

    def read(self, node: StateTreeNode) -> Any:
        return self.resolved.read(node)

    def write(self, node: StateTreeNode, value: Any) -> None:
        self.resolved.write(node, value)

    def is_type(self, value: Any) -> bool:
        return self.resolved.is_type(value)


def late_model(target: Union[str, Callable[[], BaseType]]) -> LateType:
    """Refer to a model type that is registered (or defined) later."""
    return LateType(target)


# ========== REFERENCES ==========

class ReferenceType(BaseType):
    """Field holding the identifier of a model instance, resolved on every read.

    Args:
        target: model type, late type or registered type name
        safe: read a missing target as ``None`` instead of raising
        get: custom resolver ``(identifier, parent_instance) -> value``
        set: custom serializer ``(value) -> identifier``
    """

    kind = NodeKind.REFERENCE

    def __init__(
        self,
        target: Union[str, BaseType],
        safe: bool = False,
        get: Optional[Callable[[Any, Any], Any]] = None,
        set: Optional[Callable[[Any], Any]] = None,
    ):
        self.target = target
        self.safe = safe
        self.get_resolver = get
        self.set_resolver = set

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.name

    @property
    def name(self) -> str:
        prefix = "safe_reference" if self.safe else "reference"
        return f"{prefix}<{self.target_name}>"

    def prepare(self, value: Any) -> Any:
        """Identifier to store for ``value`` (an instance or an identifier)."""
        if self.set_resolver is not None and value is not None:
            return self.set_resolver(value)
        if value is None:
            return None
        if is_state_tree_node(value):
            target = get_state_tree_node(value)
            if target.identifier_value is None:
                raise ValidationError(
                    f"Cannot reference a '{target.type_name}' instance without an identifier"
                )
            return target.identifier_value
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            raise ValidationError(f"Value {value!r} is not a valid identifier for '{self.name}'")
        return value

    def create(self, snapshot: Any = None, env: Any = None) -> Any:
        return self.prepare(snapshot)

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        return StateTreeNode(self, self.prepare(value), env)

    def read(self, node: StateTreeNode) -> Any:
        identifier_value = node.get_value()
        if self.get_resolver is not None:
            parent = node.parent.instance if node.parent is not None else None
            return self.get_resolver(identifier_value, parent)
        target = resolve_reference(self.target_name, identifier_value, safe=self.safe)
        return target.instance if target is not None else None

    def write(self, node: StateTreeNode, value: Any) -> None:
        node.set_value(self.prepare(value))

    def is_type(self, value: Any) -> bool:
        if value is None or is_state_tree_node(value):
            return True
        return isinstance(value, (str, int)) and not isinstance(value, bool)


def reference(target: Union[str, BaseType], get: Optional[Callable] = None, set: Optional[Callable] = None) -> ReferenceType:
    return ReferenceType(target, safe=False, get=get, set=set)


def safe_reference(target: Union[str, BaseType]) -> ReferenceType:
    return ReferenceType(target, safe=True)


# ========== COLLECTIONS ==========

def _reconcile_children(
    node: StateTreeNode,
    item_type: BaseType,
    entries: Sequence[Tuple[str, Any]],
) -> List[Tuple[str, Any]]:
    """Rebuild ``node``'s children from ``(key, item)`` entries.

    Instances keep their node; scalar/reference entries reuse an existing
    child holding an equal value of the same
    type (same key preferred); anything else gets a fresh node. Children not kept are destroyed. Returns ``(key, stored)``
    pairs, where stored is the instance for complex items and the raw value
    for leaves.
    """
    existing = list(node.get_children().items())
    kept = set()
    planned: List[Tuple[str, StateTreeNode]] = []
    leaf = is_leaf(item_type.kind)

    for key, item in entries:
        child = None
        if is_state_tree_node(item):
            child = get_state_tree_node(item)
            if not child.is_alive:
                raise DeadNodeError(child.type_name, child.path, action="insert")
        elif leaf:
            stored = item_type.prepare(item)
            candidates = [pair for pair in existing if pair[0] == key] + existing
            for _, candidate in candidates:
                value = candidate.get_value()
                if id(candidate) not in kept and type(value) is type(stored) and value == stored:
                    child = candidate
                    break
        if child is None:
            child = item_type.instantiate(item, node.env)
        elif id(child) in kept:
            raise StateTreeError(f"The same node cannot appear twice in '{node.path or '/'}'")
        kept.add(id(child))
        planned.append((key, child))

    dropped = [old for _, old in existing if id(old) not in kept]
    for old in dropped:
        old.destroy()
    if dropped:
        logger.debug(f"Reconciled '{node.path or '/'}': destroyed {len(dropped)} entries")

    node.clear_children()
    for key, child in planned:
        node.add_child(key, child)

    return [
        (key, child.instance if child.instance is not None else child.get_value())
        for key, child in planned
    ]


class ArrayInstance(MutableSequence):
    """List-like view over an array node. Every mutation replaces the whole
    value through set_value(), emitting one ``replace`` patch."""

    def __init__(self, array_type: 'ArrayType', node: StateTreeNode):
        setattr(self, NODE_ATTR, node)
        self._array_type = array_type

    @property
    def _node(self) -> StateTreeNode:
        return getattr(self, NODE_ATTR)

    def _items(self) -> List[Any]:
        return self._node.get_value() or []

    def __len__(self) -> int:
        return len(self._items())

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        size = len(self)
        if index < 0:
            index += size
        if not 0 <= index < size:
            raise IndexError("array index out of range")
        child = self._node.get_child(str(index))
        if child is None:
            return self._items()[index]
        return self._array_type.item_type.read(child)

    def __setitem__(self, index, value) -> None:
        updated = list(self._items())
        updated[index] = value
        self._node.set_value(updated)

    def __delitem__(self, index) -> None:
        updated = list(self._items())
        del updated[index]
        self._node.set_value(updated)

    def insert(self, index: int, value: Any) -> None:
        updated = list(self._items())
        updated.insert(index, value)
        self._node.set_value(updated)

    def extend(self, values: Iterable[Any]) -> None:
        self._node.set_value(list(self._items()) + list(values))

    def clear(self) -> None:
        self._node.set_value([])

    def replace(self, values: Iterable[Any]) -> None:
        self._node.set_value(list(values))

    def reverse(self) -> None:
        self._node.set_value(list(reversed(self._items())))

    def sort(self, key: Optional[Callable[[Any], Any]] = None, reverse: bool = False) -> None:
        items = self._items()
        values = list(self)
        order = sorted(
            range(len(items)),
            key=lambda i: key(values[i]) if key is not None else values[i],
            reverse=reverse,
        )
        self._node.set_value([items[i] for i in order])

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, (list, ArrayInstance)):
            return list(self) == list(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"{self._array_type.name}({list(self)!r})"


class ArrayType(BaseType):
    kind = NodeKind.ARRAY

    def __init__(self, item_type: Any):
        self.item_type = _as_type(item_type)

    @property
    def name(self) -> str:
        return f"array<{self.item_type.name}>"

    def create(self, snapshot: Any = None, env: Any = None) -> ArrayInstance:
        snapshot = _plain(snapshot)
        node = StateTreeNode(self, [], env)
        instance = ArrayInstance(self, node)
        node.instance = instance
        node.reconciler = functools.partial(self._reconcile, node)
        # Initial contents are stored without emitting a patch
        node.cell.set(node.reconciler(list(snapshot or [])))
        return instance

    def _reconcile(self, node: StateTreeNode, value: Any) -> List[Any]:
        items = list(value or [])
        entries = [(str(index), item) for index, item in enumerate(items)]
        return [stored for _, stored in _reconcile_children(node, self.item_type, entries)]

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        if isinstance(value, ArrayInstance):
            return get_state_tree_node(value)
        return get_state_tree_node(self.create(value, env))

    def write(self, node: StateTreeNode, value: Any) -> None:
        node.set_value(list(value or []))

    def is_type(self, value: Any) -> bool:
        if isinstance(value, ArrayInstance):
            return True
        return isinstance(value, (list, tuple)) and all(self.item_type.is_type(item) for item in value)


class MapInstance(MutableMapping):
    """Dict-like view over a map node. Keys are strings."""

    def __init__(self, map_type: 'MapType', node: StateTreeNode):
        setattr(self, NODE_ATTR, node)
        self._map_type = map_type

    @property
    def _node(self) -> StateTreeNode:
        return getattr(self, NODE_ATTR)

    def _entries(self) -> Dict[str, Any]:
        return self._node.get_value() or {}

    def __getitem__(self, key: Any) -> Any:
        child = self._node.get_child(str(key))
        if child is None:
            raise KeyError(key)
        return self._map_type.item_type.read(child)

    def __setitem__(self, key: Any, value: Any) -> None:
        updated = dict(self._entries())
        updated[str(key)] = value
        self._node.set_value(updated)

    def __delitem__(self, key: Any) -> None:
        key = str(key)
        if key not in self._entries():
            raise KeyError(key)
        updated = dict(self._entries())
        del updated[key]
        self._node.set_value(updated)

    def __iter__(self):
        return iter(list(self._entries().keys()))

    def __len__(self) -> int:
        return len(self._entries())

    def put(self, value: Any) -> Any:
        """Insert a model value under its own identifier and return the stored instance."""
        if is_state_tree_node(value):
            key = get_state_tree_node(value).identifier_value
        else:
            item_type = _unwrap(self._map_type.item_type)
            attribute = getattr(item_type, 'identifier_attribute', None)
            key = value.get(attribute) if attribute is not None and isinstance(value, Mapping) else None
        if key is None:
            raise ValidationError(f"put() needs a value with an identifier for '{self._map_type.name}'")
        self[key] = value
        return self[key]

    def clear(self) -> None:
        self._node.set_value({})

    def replace(self, values: Mapping) -> None:
        self._node.set_value({str(key): value for key, value in dict(values).items()})

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, (dict, MapInstance)):
            return dict(self) == dict(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"{self._map_type.name}({dict(self)!r})"


class MapType(BaseType):
    kind = NodeKind.MAP

    def __init__(self, item_type: Any):
        self.item_type = _as_type(item_type)

    @property
    def name(self) -> str:
        return f"map<{self.item_type.name}>"

    def create(self, snapshot: Any = None, env: Any = None) -> MapInstance:
        snapshot = _plain(snapshot)
        node = StateTreeNode(self, {}, env)
        instance = MapInstance(self, node)
        node.instance = instance
        node.reconciler = functools.partial(self._reconcile, node)
        node.cell.set(node.reconciler(dict(snapshot or {})))
        return instance

    def _reconcile(self, node: StateTreeNode, value: Any) -> Dict[str, Any]:
        entries = [(str(key), item) for key, item in dict(value or {}).items()]
        return dict(_reconcile_children(node, self.item_type, entries))

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        if isinstance(value, MapInstance):
            return get_state_tree_node(value)
        return get_state_tree_node(self.create(value, env))

    def write(self, node: StateTreeNode, value: Any) -> None:
        node.set_value(dict(value or {}))

    def is_type(self, value: Any) -> bool:
        if isinstance(value, MapInstance):
            return True
        return isinstance(value, Mapping) and all(self.item_type.is_type(item) for item in value.values())


def array(item_type: Any) -> ArrayType:
    return ArrayType(item_type)


def map_of(item_type: Any) -> MapType:
    return MapType(item_type)


# ========== MODELS ==========

def _field_node(node: StateTreeNode, name: str) -> StateTreeNode:
    child = node.get_child(name)
    if child is None:
        # The field value was detached or destroyed
        path = child_path(node.path, name)
        raise StateTreeError(f"Field '{name}' of '{node.type_name}' at '{path}' is no longer part of the tree")
    return child


class ModelInstance:
    """Instance of a ModelType.

    Attribute reads resolve declared fields, then volatile state, then views,
    then actions. Assignment is allowed for fields and existing volatile keys.
    """

    def __init__(self, model_type: 'ModelType', node: StateTreeNode):
        object.__setattr__(self, NODE_ATTR, node)
        object.__setattr__(self, '_model_type', model_type)
        object.__setattr__(self, '_views', {})
        object.__setattr__(self, '_actions', {})

    def __getattr__(self, name: str) -> Any:
        if name.startswith('__') and name.endswith('__'):
            raise AttributeError(name)
        node: StateTreeNode = object.__getattribute__(self, NODE_ATTR)
        model_type: ModelType = object.__getattribute__(self, '_model_type')

        prop_type = model_type.properties.get(name)
        if prop_type is not None:
            if not node.is_alive:
                raise DeadNodeError(node.type_name, node.path, action="read a field of")
            return prop_type.read(_field_node(node, name))

        if name in node.volatile:
            return node.volatile[name]

        views = object.__getattribute__(self, '_views')
        if name in views:
            view = views[name]
            if isinstance(view, property):
                return view.fget(self)
            return view

        actions = object.__getattribute__(self, '_actions')
        if name in actions:
            return actions[name]

        raise AttributeError(f"'{model_type.name}' instance has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        node: StateTreeNode = object.__getattribute__(self, NODE_ATTR)
        model_type: ModelType = object.__getattribute__(self, '_model_type')

        prop_type = model_type.properties.get(name)
        if prop_type is not None:
            if not node.is_alive:
                raise DeadNodeError(node.type_name, node.path)
            prop_type.write(_field_node(node, name), value)
            return

        if name in node.volatile:
            node.volatile[name] = value
            node.notify_volatile_change()
            return

        raise AttributeError(
            f"Cannot assign '{name}' on '{model_type.name}': not a declared field or volatile state"
        )

    def __dir__(self) -> List[str]:
        node = object.__getattribute__(self, NODE_ATTR)
        model_type = object.__getattribute__(self, '_model_type')
        return sorted(
            set(model_type.properties)
            | set(node.volatile)
            | set(object.__getattribute__(self, '_views'))
            | set(object.__getattribute__(self, '_actions'))
        )

    def __repr__(self) -> str:
        node = object.__getattribute__(self, NODE_ATTR)
        if not node.is_alive:
            return f"<{node.type_name} (dead)>"
        return f"{node.type_name}({get_snapshot_from_node(node)!r})"


@dataclass(frozen=True)
class _ModelConfig:
    name: str
    properties: Dict[str, BaseType]
    views: Tuple[Callable, ...] = ()
    actions: Tuple[Callable, ...] = ()
    volatiles: Tuple[Callable, ...] = ()
    extensions: Tuple[Callable, ...] = ()
    pre_processor: Optional[Callable[[Any], Any]] = None
    post_processor: Optional[Callable[[Any], Any]] = None
    hooks: Dict[str, Callable] = field(default_factory=dict)


def _wrap_action(node: StateTreeNode, name: str, fn: Callable) -> Callable:
    @functools.wraps(fn)
    def action(*args, **kwargs):
        return track_action(node, name, args, lambda: fn(*args, **kwargs))
    return action


class ModelType(BaseType):
    """Record type with declared fields. Builder methods return new types."""

    kind = NodeKind.MODEL

    def __init__(self, config: _ModelConfig):
        self._config = config
        self.identifier_attribute: Optional[str] = None
        for key, prop_type in config.properties.items():
            if isinstance(_unwrap_static(prop_type), IdentifierType):
                self.identifier_attribute = key
                break

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def properties(self) -> Dict[str, BaseType]:
        return self._config.properties

    def _derive(self, **changes: Any) -> 'ModelType':
        return ModelType(dataclasses.replace(self._config, **changes))

    # ========== BUILDERS ==========

    def named(self, name: str) -> 'ModelType':
        return self._derive(name=name)

    def props(self, **properties: Any) -> 'ModelType':
        merged = dict(self._config.properties)
        merged.update({key: _as_type(value) for key, value in properties.items()})
        return self._derive(properties=merged)

    def views(self, fn: Callable[[Any], Dict[str, Any]]) -> 'ModelType':
        """``fn(self)`` returns a dict; ``property`` values are computed on access."""
        return self._derive(views=self._config.views + (fn,))

    def actions(self, fn: Callable[[Any], Dict[str, Callable]]) -> 'ModelType':
        """``fn(self)`` returns a dict of callables, each tracked as an action."""
        return self._derive(actions=self._config.actions + (fn,))

    def volatile(self, fn: Callable[[Any], Dict[str, Any]]) -> 'ModelType':
        return self._derive(volatiles=self._config.volatiles + (fn,))

    def extend(self, fn: Callable[[Any], Dict[str, Dict[str, Any]]]) -> 'ModelType':
        """``fn(self)`` returns ``{"views": ..., "actions": ..., "state": ...}``."""
        return self._derive(extensions=self._config.extensions + (fn,))

    def pre_process_snapshot(self, fn: Callable[[Any], Any]) -> 'ModelType':
        return self._derive(pre_processor=fn)

    def post_process_snapshot(self, fn: Callable[[Any], Any]) -> 'ModelType':
        return self._derive(post_processor=fn)

    def _with_hook(self, name: str, fn: Callable[[Any], None]) -> 'ModelType':
        hooks = dict(self._config.hooks)
        hooks[name] = fn
        return self._derive(hooks=hooks)

    def after_create(self, fn: Callable[[Any], None]) -> 'ModelType':
        return self._with_hook('after_create', fn)

    def after_attach(self, fn: Callable[[Any], None]) -> 'ModelType':
        return self._with_hook('after_attach', fn)

    def before_detach(self, fn: Callable[[Any], None]) -> 'ModelType':
        return self._with_hook('before_detach', fn)

    def before_destroy(self, fn: Callable[[Any], None]) -> 'ModelType':
        return self._with_hook('before_destroy', fn)

    def register(self, metadata: Optional[Dict[str, Any]] = None) -> 'ModelType':
        """Register under this type's name for late_model() lookups."""
        TypeRegistry.register(self.name, self, metadata)
        return self

    # ========== INSTANCES ==========

    def create(self, snapshot: Any = None, env: Any = None) -> ModelInstance:
        config = self._config
        snapshot = _plain(snapshot)
        if snapshot is None:
            snapshot = {}
        if config.pre_processor is not None:
            snapshot = config.pre_processor(snapshot)
        if not isinstance(snapshot, Mapping):
            raise ValidationError(
                f"Snapshot for model '{self.name}' must be a mapping, got {type(snapshot).__name__}"
            )

        node = StateTreeNode(self, dict(snapshot), env)
        node.pre_processor = config.pre_processor
        node.post_processor = config.post_processor

        for key, prop_type in config.properties.items():
            node.add_child(key, prop_type.instantiate(snapshot.get(key), env))

        instance = ModelInstance(self, node)
        node.instance = instance

        self._bind_identifier(node)
        self._install_capabilities(instance, node)
        self._install_hooks(instance, node)
        run_hook(node, 'after_create')
        return instance

    def _bind_identifier(self, node: StateTreeNode) -> None:
        if self.identifier_attribute is None:
            return
        id_node = node.get_child(self.identifier_attribute)
        type_name = self.name

        def rebind(new_value: Any, old_value: Any) -> None:
            if not node.is_alive:
                return
            if new_value is None:
                node.unregister_identifier()
            else:
                node.register_identifier(type_name, new_value)

        if id_node.get_value() is not None:
            node.register_identifier(type_name, id_node.get_value())
        id_node.cell.subscribe(rebind)

    def _install_capabilities(self, instance: ModelInstance, node: StateTreeNode) -> None:
        config = self._config
        views: Dict[str, Any] = object.__getattribute__(instance, '_views')
        actions: Dict[str, Callable] = object.__getattribute__(instance, '_actions')

        for fn in config.volatiles:
            node.volatile.update(fn(instance) or {})
        for fn in config.views:
            views.update(fn(instance) or {})
        for fn in config.actions:
            for name, action in (fn(instance) or {}).items():
                actions[name] = _wrap_action(node, name, action)
        for fn in config.extensions:
            extension = fn(instance) or {}
            node.volatile.update(extension.get('state', {}))
            views.update(extension.get('views', {}))
            for name, action in extension.get('actions', {}).items():
                actions[name] = _wrap_action(node, name, action)

    def _install_hooks(self, instance: ModelInstance, node: StateTreeNode) -> None:
        hooks = {name: functools.partial(fn, instance) for name, fn in self._config.hooks.items()}
        if hooks:
            register_hooks(node, LifecycleHooks(**hooks))

    def instantiate(self, value: Any, env: Any = None) -> StateTreeNode:
        if isinstance(value, ModelInstance):
            return get_state_tree_node(value)
        return get_state_tree_node(self.create(value, env))

    def read(self, node: StateTreeNode) -> Any:
        return node.instance

    def write(self, node: StateTreeNode, value: Any) -> None:
        """Assigning a snapshot merges into the existing child; assigning an
        instance replaces the child node (one ``replace`` patch)."""
        if not isinstance(value, ModelInstance):
            apply_snapshot_to_node(node, value)
            return

        new_node = get_state_tree_node(value)
        if new_node is node:
            return
        parent, key = node.parent, node.key
        old_snapshot = get_snapshot_from_node(node)
        parent.add_child(key, new_node)
        new_node.write(
            new_node.get_value(),
            JsonPatch('replace', new_node.path, get_snapshot_from_node(new_node)),
            ReversibleJsonPatch('replace', new_node.path, old_snapshot, old_snapshot),
        )

    def is_type(self, value: Any) -> bool:
        if isinstance(value, ModelInstance):
            node = get_state_tree_node(value)
            return node.type is self or node.type_name == self.name
        if not isinstance(value, Mapping):
            return False
        return all(
            prop_type.is_type(value[key])
            for key, prop_type in self.properties.items()
            if key in value
        )


def _unwrap_static(type_: BaseType) -> BaseType:
    # Late types are not resolved while a model is being declared
    while isinstance(type_, OptionalType):
        type_ = type_.inner
    return type_


def model(*args: Any, **fields: Any) -> ModelType:
    """Declare a model type.

    Accepts ``model("Name", field=type, ...)``, ``model("Name", {...})`` or
    ``model({...})``. Literal defaults become optional scalars.
    """
    name = "AnonymousModel"
    declared: Dict[str, Any] = {}
    for arg in args:
        if isinstance(arg, str):
            name = arg
        elif isinstance(arg, Mapping):
            declared.update(arg)
        else:
            raise TypeError(f"model() takes a name and/or a property mapping, got {arg!r}")
    declared.update(fields)
    return ModelType(_ModelConfig(
        name=name,
        properties={key: _as_type(value) for key, value in declared.items()},
    ))


def compose(*types: Union[str, ModelType]) -> ModelType:
    """Merge several model types into one (``compose("Name", A, B)``)."""
    name = "ComposedModel"
    if types and isinstance(types[0], str):
        name, types = types[0], types[1:]

    properties: Dict[str, BaseType] = {}
    views: Tuple[Callable, ...] = ()
    actions: Tuple[Callable, ...] = ()
    volatiles: Tuple[Callable, ...] = ()
    extensions: Tuple[Callable, ...] = ()
    hooks: Dict[str, Callable] = {}
    for type_ in types:
        config = type_._config
        properties.update(config.properties)
        views += config.views
        actions += config.actions
        volatiles += config.volatiles
        extensions += config.extensions
        hooks.update(config.hooks)

    return ModelType(_ModelConfig(
        name=name,
        properties=properties,
        views=views,
        actions=actions,
        volatiles=volatiles,
        extensions=extensions,
        hooks=hooks,
    ))
