"""
Patch protocol: single structural edits addressed by path.

Wire format (replayable history, kept bit-exact)::

    {"op": "replace" | "add" | "remove", "path": "/seg/seg", "value": ...}

Reversible patches also carry ``"oldValue"``: the value found at ``path``
before the forward edit was made.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union, TYPE_CHECKING

from statetree.errors import InvalidPathError
from statetree.kinds import NODE_ATTR, is_collection, is_leaf
from statetree.path import APPEND_TOKEN, child_path, split_path
from statetree.snapshot import apply_snapshot_to_node, get_entry_snapshot, get_snapshot_from_node

if TYPE_CHECKING:
    from statetree.node import StateTreeNode

logger = logging.getLogger(__name__)

PATCH_OPS = ("replace", "add", "remove")


@dataclass(frozen=True)
class JsonPatch:
    """One structural edit. ``value`` is ignored for ``remove``."""
    op: str
    path: str
    value: Any = None

    def __post_init__(self):
        if self.op not in PATCH_OPS:
            raise ValueError(f"Unknown patch op: {self.op!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Export to the JSON wire format."""
        data: Dict[str, Any] = {'op': self.op, 'path': self.path}
        if self.op != 'remove':
            data['value'] = self.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> 'JsonPatch':
        return cls(op=data['op'], path=data['path'], value=data.get('value'))


@dataclass(frozen=True)
class ReversibleJsonPatch(JsonPatch):
    """A patch that also records the value it overwrote."""
    old_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['oldValue'] = self.old_value
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> 'ReversibleJsonPatch':
        return cls(
            op=data['op'],
            path=data['path'],
            value=data.get('value'),
            old_value=data.get('oldValue'),
        )

    def as_forward(self) -> JsonPatch:
        return JsonPatch(self.op, self.path, self.value)


PatchLike = Union[JsonPatch, Mapping]


def as_patch(patch: PatchLike) -> JsonPatch:
    """Accept either a patch dataclass or its dict wire form."""
    if isinstance(patch, JsonPatch):
        return patch
    if 'oldValue' in patch:
        return ReversibleJsonPatch.from_dict(patch)
    return JsonPatch.from_dict(patch)


# ========== APPLICATION ==========

def apply_patch_to_node(root: 'StateTreeNode', patch: PatchLike) -> None:
    """Apply one patch, walking from ``root``.

    Raises:
        InvalidPathError: an intermediate segment has no child, or a sequence
            index is out of range. Patches applied earlier are not rolled back.
        DeadNodeError: the addressed node has been destroyed.
    """
    patch = as_patch(patch)
    segments = split_path(patch.path)
    logger.debug(f"Applying patch {patch.op} {patch.path or '/'}")

    if not segments:
        if patch.op != 'replace':
            raise InvalidPathError(patch.path)
        apply_snapshot_to_node(root, patch.value)
        return

    node = root
    for segment in segments[:-1]:
        child = node.get_child(segment)
        if child is None:
            raise InvalidPathError(patch.path, segment)
        node = child

    key = segments[-1]
    if patch.op == 'replace':
        _apply_replace(node, key, patch)
    elif patch.op == 'add':
        _apply_add(node, key, patch)
    else:
        _apply_remove(node, key, patch.path)


def _parse_index(key: str, size: int, path: str, allow_end: bool) -> int:
    if allow_end and key == APPEND_TOKEN:
        return size
    try:
        index = int(key)
    except ValueError:
        raise InvalidPathError(path, key) from None
    upper = size if allow_end else size - 1
    if index < 0 or index > upper:
        raise InvalidPathError(path, key)
    return index


def _apply_replace(container: 'StateTreeNode', key: str, patch: JsonPatch) -> None:
    child = container.get_child(key)
    # Leaf entries of a list/dictionary are stored by the container itself
    if child is not None and not (is_collection(container.kind) and is_leaf(child.kind)):
        apply_snapshot_to_node(child, patch.value)
        return
    if not is_collection(container.kind):
        raise InvalidPathError(patch.path, key)

    current = container.get_value()
    if isinstance(current, list):
        index = _parse_index(key, len(current), patch.path, allow_end=False)
        key = str(index)
        created = False
        old = get_entry_snapshot(container, key, current[index])
        updated = list(current)
        updated[index] = patch.value
    else:
        current = current or {}
        created = key not in current
        old = None if created else get_entry_snapshot(container, key, current[key])
        updated = dict(current)
        updated[key] = patch.value

    path = child_path(container.path, key)
    if created:
        # Replacing a missing entry inserts it, so undoing it removes it
        inverse = ReversibleJsonPatch('remove', path, None, None)
    else:
        inverse = ReversibleJsonPatch('replace', path, old, old)
    container.write(updated, JsonPatch('replace', path, patch.value), inverse)


def _apply_add(container: 'StateTreeNode', key: str, patch: JsonPatch) -> None:
    if not is_collection(container.kind):
        raise InvalidPathError(patch.path, key)
    current = container.get_value()

    if isinstance(current, list):
        index = _parse_index(key, len(current), patch.path, allow_end=True)
        updated = list(current)
        updated.insert(index, patch.value)
        path = child_path(container.path, str(index))
        forward = JsonPatch('add', path, patch.value)
        inverse = ReversibleJsonPatch('remove', path, None, None)
    elif isinstance(current, Mapping) or current is None:
        updated = dict(current or {})
        path = child_path(container.path, key)
        existed = key in updated
        old = get_entry_snapshot(container, key, updated.get(key)) if existed else None
        updated[key] = patch.value
        forward = JsonPatch('add', path, patch.value)
        if existed:
            inverse = ReversibleJsonPatch('replace', path, old, old)
        else:
            inverse = ReversibleJsonPatch('remove', path, None, None)
    else:
        raise InvalidPathError(patch.path, key)

    container.write(updated, forward, inverse)


def _apply_remove(container: 'StateTreeNode', key: str, patch_path: str) -> None:
    if not is_collection(container.kind):
        raise InvalidPathError(patch_path, key)
    current = container.get_value()

    if isinstance(current, list):
        index = _parse_index(key, len(current), patch_path, allow_end=False)
        key = str(index)
        old = get_entry_snapshot(container, key, current[index])
        updated = list(current)
        del updated[index]
    elif isinstance(current, Mapping):
        if key not in current:
            raise InvalidPathError(patch_path, key)
        old = get_entry_snapshot(container, key, current[key])
        updated = dict(current)
        del updated[key]
    else:
        raise InvalidPathError(patch_path, key)

    path = child_path(container.path, key)
    container.write(
        updated,
        JsonPatch('remove', path),
        ReversibleJsonPatch('add', path, old, old),
    )


def remove_collection_entry(container: 'StateTreeNode', key: str, detach: bool = False) -> None:
    """Remove one entry of a list/dictionary node, emitting remove + inverse add.

    With ``detach=True`` the child node is detached first so the collection's
    reconciliation does not destroy it.
    """
    if detach:
        child = container.get_child(key)
        if child is not None:
            # The snapshot must be taken while the child is still attached
            old = get_snapshot_from_node(child)
            child.detach()
            current = container.get_value()
            if isinstance(current, list):
                updated = list(current)
                del updated[int(key)]
            else:
                updated = dict(current)
                del updated[key]
            path = child_path(container.path, key)
            container.write(
                updated,
                JsonPatch('remove', path),
                ReversibleJsonPatch('add', path, old, old),
            )
            return
    _apply_remove(container, key, child_path(container.path, key))


def apply_patches(root: 'StateTreeNode', patches: Union[PatchLike, Iterable[PatchLike]]) -> None:
    """Apply one patch or a list of patches in the given order."""
    if isinstance(patches, (JsonPatch, Mapping)):
        patches = [patches]
    for patch in patches:
        apply_patch_to_node(root, patch)


# ========== RECORDING ==========

def _root_of(target: Any) -> 'StateTreeNode':
    # Accepts a node or a modeling-layer instance
    return getattr(target, NODE_ATTR, target).get_root()


class PatchRecorder:
    """Collects patches emitted below a node until stopped.

    Example:
        recorder = PatchRecorder(node)
        ...mutations...
        recorder.stop()
        recorder.undo(node)  # applies inverse patches newest first
    """

    def __init__(self, node: 'StateTreeNode'):
        self.patches: List[JsonPatch] = []
        self.inverse_patches: List[ReversibleJsonPatch] = []
        self._recording = True
        self._disposer: Optional[Callable[[], None]] = node.on_patch(self._on_patch)

    def _on_patch(self, patch: JsonPatch, inverse_patch: ReversibleJsonPatch) -> None:
        if self._recording:
            self.patches.append(patch)
            self.inverse_patches.append(inverse_patch)

    @property
    def is_recording(self) -> bool:
        return self._recording

    def stop(self) -> None:
        self._recording = False
        if self._disposer is not None:
            self._disposer()
            self._disposer = None

    def resume(self) -> None:
        """Resume collecting. Has no effect after stop()."""
        self._recording = self._disposer is not None

    def replay(self, target: Any) -> None:
        apply_patches(_root_of(target), list(self.patches))

    def undo(self, target: Any) -> None:
        """Apply the inverse patches newest first."""
        apply_patches(_root_of(target), list(reversed(self.inverse_patches)))

    def pairs(self) -> List[Tuple[JsonPatch, ReversibleJsonPatch]]:
        return list(zip(self.patches, self.inverse_patches))
