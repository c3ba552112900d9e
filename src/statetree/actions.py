"""
Action context stack and action recording.

The running action is held in a ContextVar. track_action() sets it before the
action body runs and resets it in a ``finally`` block, so the previous context
is restored even when the body raises. Listeners are notified only after the
body returns; a raising action leaves its partial mutations in place and is
not reported.

Two kinds of observers:
- global action listeners (add_action_listener): every tracked action
- per-node listeners (on_action / record_actions): actions on the node or
  anywhere below it
"""

import contextvars
import json
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from statetree.cell import Disposer
from statetree.errors import InvalidPathError, StateTreeError
from statetree.node import StateTreeNode, get_state_tree_node
from statetree.path import split_path

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class ActionContext:
    """The action currently running. ``parent`` is the enclosing action, if any."""
    name: str
    args: Tuple[Any, ...]
    node: StateTreeNode
    parent: Optional['ActionContext'] = None


@dataclass(frozen=True)
class ActionCall:
    """Serializable description of a completed action."""
    name: str
    path: str
    args: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'path': self.path, 'args': list(self.args)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionCall':
        return cls(name=data['name'], path=data.get('path', ""), args=list(data.get('args', [])))


ActionListener = Callable[[ActionCall], None]

_current_action: contextvars.ContextVar[Optional[ActionContext]] = contextvars.ContextVar(
    'statetree_current_action', default=None
)

_action_listeners: List[ActionListener] = []

# node -> listeners for actions on that node's subtree
_node_action_listeners: 'weakref.WeakKeyDictionary[StateTreeNode, List[ActionListener]]' = (
    weakref.WeakKeyDictionary()
)


def get_running_action_context() -> Optional[ActionContext]:
    return _current_action.get()


def add_action_listener(listener: ActionListener) -> Disposer:
    """Subscribe to every tracked action. Returns a disposer."""
    if listener not in _action_listeners:
        _action_listeners.append(listener)
    return lambda: remove_action_listener(listener)


def remove_action_listener(listener: ActionListener) -> None:
    if listener in _action_listeners:
        _action_listeners.remove(listener)


def on_action(target: Any, listener: ActionListener) -> Disposer:
    """Subscribe to actions run on ``target`` or any of its descendants."""
    node = get_state_tree_node(target)
    listeners = _node_action_listeners.setdefault(node, [])
    listeners.append(listener)

    def dispose() -> None:
        current = _node_action_listeners.get(node)
        if current is not None and listener in current:
            current.remove(listener)
            if not current:
                del _node_action_listeners[node]

    return dispose


def _notify_node_listeners(node: StateTreeNode, call: ActionCall) -> None:
    current: Optional[StateTreeNode] = node
    while current is not None:
        for listener in list(_node_action_listeners.get(current, ())):
            listener(call)
        current = current.parent


def track_action(node: StateTreeNode, name: str, args: Sequence[Any], fn: Callable[[], T]) -> T:
    """Run ``fn`` as action ``name`` on ``node``.

    Example:
        track_action(node, "increment", (1,), lambda: counter.set_value(counter.get_value() + 1))
    """
    args = tuple(args)
    context = ActionContext(name=name, args=args, node=node, parent=_current_action.get())
    token = _current_action.set(context)
    try:
        result = fn()

        call = ActionCall(name=name, path=node.path, args=list(args))
        for listener in list(_action_listeners):
            listener(call)
        _notify_node_listeners(node, call)
        return result
    finally:
        _current_action.reset(token)


def apply_action(target: Any, call: Any) -> Any:
    """Invoke a recorded action on the instance found at ``call.path`` below ``target``.

    Raises:
        InvalidPathError: the path does not lead to a child.
        StateTreeError: the instance has no such action.
    """
    if isinstance(call, dict):
        call = ActionCall.from_dict(call)

    node = get_state_tree_node(target)
    for segment in split_path(call.path):
        child = node.get_child(segment)
        if child is None:
            raise InvalidPathError(call.path, segment)
        node = child

    method = getattr(node.instance, call.name, None) if node.instance is not None else None
    if not callable(method):
        raise StateTreeError(f"Action '{call.name}' not found on node '{node.path}' ({node.type_name})")
    return method(*call.args)


class ActionRecording:
    """Records actions run on a subtree while started.

    Example:
        recording = record_actions(store)
        store.add_todo("write docs")
        recording.stop()
        recording.replay(other_store)
    """

    def __init__(self, target: Any):
        self.node = get_state_tree_node(target)
        self.actions: List[ActionCall] = []
        self._disposer: Optional[Disposer] = None
        self.start()

    def _record(self, call: ActionCall) -> None:
        if self.node.is_alive:
            self.actions.append(call)

    @property
    def is_recording(self) -> bool:
        return self._disposer is not None

    def start(self) -> None:
        if self._disposer is None:
            self._disposer = on_action(self.node, self._record)

    def stop(self) -> None:
        if self._disposer is not None:
            self._disposer()
            self._disposer = None

    def clear(self) -> None:
        self.actions = []

    def replay(self, target: Any) -> None:
        for call in list(self.actions):
            apply_action(target, call)

    def to_json(self) -> str:
        return json.dumps([call.to_dict() for call in self.actions])

    def load_json(self, data: str) -> None:
        """Replace the recorded actions with ones exported by to_json()."""
        self.actions = [ActionCall.from_dict(item) for item in json.loads(data)]


def record_actions(target: Any) -> ActionRecording:
    return ActionRecording(target)
