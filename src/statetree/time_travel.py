"""
Snapshot-based time travel.

Keeps a bounded list of full-tree SnapshotRecords plus a cursor. Moving the
cursor applies the stored snapshot to the target. Each step costs O(tree
size), but any mutation shape can be restored.
"""

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from statetree.config import get_tree_config
from statetree.errors import HistoryIndexError
from statetree.history_model import SnapshotRecord
from statetree.node import get_state_tree_node
from statetree.snapshot import apply_snapshot_to_node, get_snapshot_from_node

logger = logging.getLogger(__name__)


class TimeTravelManager:
    """Full-snapshot history over ``target``.

    The current state is recorded on construction. With ``auto_record`` every
    patch emitted below ``target`` records a new snapshot, except while a
    snapshot is being applied by this manager.
    """

    def __init__(self, target: Any, max_snapshots: Optional[int] = None, auto_record: bool = False):
        self.node = get_state_tree_node(target)
        self.max_snapshots = max_snapshots if max_snapshots is not None else get_tree_config().max_snapshots
        self.auto_record = auto_record

        self._records: List[SnapshotRecord] = []
        self._index = -1
        self._is_applying = False
        self._on_history_changed_callbacks: List[Callable[[], None]] = []
        self._disposer: Optional[Callable[[], None]] = None

        self.record("initial")

        if auto_record:
            self._disposer = self.node.on_patch(self._on_patch)

    def _on_patch(self, patch: Any, inverse_patch: Any) -> None:
        if not self._is_applying:
            self.record()

    # ========== PROPERTIES ==========

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def snapshot_count(self) -> int:
        return len(self._records)

    @property
    def can_go_back(self) -> bool:
        return self._index > 0

    @property
    def can_go_forward(self) -> bool:
        return self._index < len(self._records) - 1

    @property
    def is_applying(self) -> bool:
        return self._is_applying

    @property
    def records(self) -> List[SnapshotRecord]:
        return list(self._records)

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
                logger.warning(f"Error in time travel history changed callback: {e}")

    # ========== RECORDING ==========

    def record(self, label: str = "") -> SnapshotRecord:
        """Record the current state after the cursor, dropping anything ahead of it."""
        if self._index < len(self._records) - 1:
            del self._records[self._index + 1:]

        record = SnapshotRecord.create(get_snapshot_from_node(self.node), label)
        self._records.append(record)
        self._index += 1

        if len(self._records) > self.max_snapshots:
            excess = len(self._records) - self.max_snapshots
            del self._records[:excess]
            self._index -= excess

        logger.debug(f"TIME_TRAVEL: recorded snapshot {self._index} ({label or 'unlabeled'})")
        self._fire_history_changed_callbacks()
        return record

    # ========== NAVIGATION ==========

    def go_to(self, index: int) -> bool:
        """Apply the snapshot at ``index`` (negative counts from the newest).

        Returns:
            True if travel succeeded, False when ``index`` is out of range.
        """
        if index < 0:
            index = len(self._records) + index

        if index < 0 or index >= len(self._records):
            logger.warning(f"TIME_TRAVEL: Index {index} out of range [0, {len(self._records) - 1}]")
            return False

        record = self._records[index]
        self._is_applying = True
        try:
            self._index = index
            apply_snapshot_to_node(self.node, record.state)
        finally:
            self._is_applying = False

        logger.info(f"TIME_TRAVEL: moved to snapshot {index} ({record.label or record.id[:8]})")
        self._fire_history_changed_callbacks()
        return True

    def go_back(self) -> bool:
        if not self.can_go_back:
            return False
        return self.go_to(self._index - 1)

    def go_forward(self) -> bool:
        if not self.can_go_forward:
            return False
        return self.go_to(self._index + 1)

    def get_snapshot(self, index: int) -> Any:
        """Stored snapshot value at ``index``.

        Raises:
            HistoryIndexError: ``index`` is outside the retained window.
        """
        if index < 0 or index >= len(self._records):
            raise HistoryIndexError(f"Invalid snapshot index: {index} (have {len(self._records)})")
        return self._records[index].state

    def get_history_info(self) -> List[Dict[str, Any]]:
        """Human-readable history, oldest first."""
        result = []
        for i, record in enumerate(self._records):
            result.append({
                'index': i,
                'id': record.id,
                'timestamp': datetime.datetime.fromtimestamp(record.timestamp).strftime('%H:%M:%S.%f')[:-3],
                'label': record.label or f"Snapshot #{i}",
                'is_current': i == self._index,
            })
        return result

    # ========== LIFECYCLE ==========

    def clear(self) -> None:
        """Drop every snapshot and record the current state as the only one."""
        self._records = []
        self._index = -1
        self.record("initial")

    def dispose(self) -> None:
        if self._disposer is not None:
            self._disposer()
            self._disposer = None
        self._on_history_changed_callbacks.clear()


def create_time_travel_manager(
    target: Any,
    max_snapshots: Optional[int] = None,
    auto_record: bool = False,
) -> TimeTravelManager:
    return TimeTravelManager(target, max_snapshots=max_snapshots, auto_record=auto_record)
