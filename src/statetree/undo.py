"""
Patch-based undo/redo.

The UndoManager listens to the patch stream of a target node and keeps a
bounded history of HistoryEntry records plus a cursor (``history_index``,
-1 when nothing is undoable). Undo applies an entry's inverse patches newest
first; redo applies its forward patches in order. While replaying, incoming
patches are not recorded.
"""

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Generator, List, Optional, TypeVar

from statetree.config import get_tree_config
from statetree.history_model import HistoryEntry
from statetree.node import get_state_tree_node
from statetree.patch import JsonPatch, ReversibleJsonPatch, apply_patch_to_node

logger = logging.getLogger(__name__)

T = TypeVar('T')


class UndoState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    REPLAYING = "replaying"
    GROUPING = "grouping"


class UndoManager:
    """Undo/redo over the patches emitted by ``target`` and its subtree.

    Args:
        target: node or modeling-layer instance to observe
        max_history_length: entries kept; oldest dropped first
        group_by_time: merge a change into the previous entry when it comes
            within ``grouping_window`` seconds of the previous change
        grouping_window: seconds
    """

    def __init__(
        self,
        target: Any,
        max_history_length: Optional[int] = None,
        group_by_time: bool = False,
        grouping_window: Optional[float] = None,
    ):
        config = get_tree_config()
        self.node = get_state_tree_node(target)
        self.max_history_length = (
            max_history_length if max_history_length is not None else config.max_history_length
        )
        self.group_by_time = group_by_time
        self.grouping_window = grouping_window if grouping_window is not None else config.grouping_window

        self._entries: List[HistoryEntry] = []
        self._index = -1
        self._state = UndoState.IDLE
        self._replaying = False
        self._suppress_depth = 0
        self._group_depth = 0
        self._group: Optional[HistoryEntry] = None
        self._last_change_time: Optional[float] = None

        self._on_history_changed_callbacks: List[Callable[[], None]] = []
        self._disposer: Optional[Callable[[], None]] = self.node.on_patch(self._on_patch)

    # ========== PROPERTIES ==========

    @property
    def state(self) -> UndoState:
        return self._state

    @property
    def can_undo(self) -> bool:
        return self._index >= 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    @property
    def undo_levels(self) -> int:
        return self._index + 1

    @property
    def redo_levels(self) -> int:
        return len(self._entries) - self._index - 1

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def history_index(self) -> int:
        return self._index

    # ========== CALLBACKS ==========

    def add_history_changed_callback(self, callback: Callable[[], None]) -> None:
        if callback not in self._on_history_changed_callbacks:
            self._on_history_changed_callbacks.append(callback)

    def remove_history_changed_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_history_changed_callbacks:
            self._on_history_changed_callbacks.remove(callback)

    def _fire_history_changed_callbacks(self) -> None:
        for callback in list(self._on_history_changed_callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in undo history changed callback: {e}")

    # ========== RECORDING ==========

    def _on_patch(self, patch: JsonPatch, inverse_patch: ReversibleJsonPatch) -> None:
        if self._replaying or self._suppress_depth > 0:
            return

        if self._group is not None:
            self._group.patches.append(inverse_patch)
            self._group.inverse_patches.append(patch)
            return

        self._state = UndoState.RECORDING
        try:
            now = time.monotonic()
            if (
                self.group_by_time
                and self._entries
                and self._last_change_time is not None
                and now - self._last_change_time < self.grouping_window
                and self._index == len(self._entries) - 1
            ):
                entry = self._entries[self._index]
                entry.patches.append(inverse_patch)
                entry.inverse_patches.append(patch)
                entry.timestamp = now
                logger.debug(f"UNDO: merged patch {patch.op} {patch.path} into entry {self._index}")
            else:
                self._push(HistoryEntry(patches=[inverse_patch], inverse_patches=[patch], timestamp=now))
            self._last_change_time = now
        finally:
            self._state = UndoState.IDLE
        self._fire_history_changed_callbacks()

    def _push(self, entry: HistoryEntry) -> None:
        # A new entry invalidates everything that could be redone
        if self._index < len(self._entries) - 1:
            del self._entries[self._index + 1:]

        self._entries.append(entry)
        self._index += 1

        if len(self._entries) > self.max_history_length:
            excess = len(self._entries) - self.max_history_length
            del self._entries[:excess]
            self._index -= excess
            logger.debug(f"UNDO: trimmed {excess} oldest entries")

        logger.debug(f"UNDO: recorded entry {self._index} ({len(entry.patches)} patches)")

    # ========== REPLAY ==========

    @contextmanager
    def _replay(self) -> Generator[None, None, None]:
        previous = self._state
        self._replaying = True
        self._state = UndoState.REPLAYING
        try:
            yield
        finally:
            self._replaying = False
            self._state = previous

    def undo(self) -> None:
        """Revert the entry at the cursor. No-op when nothing is undoable."""
        if not self.can_undo:
            return
        entry = self._entries[self._index]
        with self._replay():
            for patch in reversed(entry.patches):
                apply_patch_to_node(self.node.get_root(), patch)
            self._index -= 1
        logger.debug(f"UNDO: undo -> index {self._index}")
        self._fire_history_changed_callbacks()

    def redo(self) -> None:
        """Re-apply the entry after the cursor. No-op at the tail."""
        if not self.can_redo:
            return
        with self._replay():
            self._index += 1
            entry = self._entries[self._index]
            for patch in entry.inverse_patches:
                apply_patch_to_node(self.node.get_root(), patch)
        logger.debug(f"UNDO: redo -> index {self._index}")
        self._fire_history_changed_callbacks()

    # ========== GROUPING ==========

    def start_group(self) -> None:
        """Open a transaction. Nested calls join the outermost group."""
        self._group_depth += 1
        if self._group_depth == 1:
            self._group = HistoryEntry()
            self._state = UndoState.GROUPING

    def end_group(self) -> None:
        """Close the transaction; an empty group records nothing."""
        if self._group_depth == 0:
            return
        self._group_depth -= 1
        if self._group_depth > 0:
            return

        group = self._group
        self._group = None
        self._state = UndoState.IDLE
        if group is not None and not group.is_empty():
            group.timestamp = time.monotonic()
            self._push(group)
            self._last_change_time = group.timestamp
            self._fire_history_changed_callbacks()

    @contextmanager
    def group(self) -> Generator[None, None, None]:
        """Record every change made inside the block as one history entry.

        Example:
            with manager.group():
                store.increment()
                store.increment()
            manager.undo()  # reverts both
        """
        self.start_group()
        try:
            yield
        finally:
            self.end_group()

    def without_undo(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` without recording any of its changes."""
        self._suppress_depth += 1
        try:
            return fn()
        finally:
            self._suppress_depth -= 1

    # ========== LIFECYCLE ==========

    def clear(self) -> None:
        self._entries = []
        self._index = -1
        self._group = None
        self._group_depth = 0
        self._last_change_time = None
        self._state = UndoState.IDLE
        self._fire_history_changed_callbacks()

    def dispose(self) -> None:
        """Stop listening and drop all history."""
        if self._disposer is not None:
            self._disposer()
            self._disposer = None
        self.clear()
        self._on_history_changed_callbacks.clear()


def create_undo_manager(
    target: Any,
    max_history_length: Optional[int] = None,
    group_by_time: bool = False,
    grouping_window: Optional[float] = None,
) -> UndoManager:
    return UndoManager(
        target,
        max_history_length=max_history_length,
        group_by_time=group_by_time,
        grouping_window=grouping_window,
    )
