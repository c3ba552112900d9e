"""
Record types kept by the history managers.

HistoryEntry: one undoable step of the UndoManager. ``patches`` holds the
inverse patches (applied newest first to undo); ``inverse_patches`` holds the
forward patches (applied in order to redo).

SnapshotRecord: one full-tree snapshot of the TimeTravelManager. Immutable,
with UUID identity, like a commit.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List

from statetree.patch import JsonPatch, ReversibleJsonPatch, as_patch


@dataclass
class HistoryEntry:
    patches: List[ReversibleJsonPatch] = field(default_factory=list)
    inverse_patches: List[JsonPatch] = field(default_factory=list)
    timestamp: float = field(default_factory=time.monotonic)

    def is_empty(self) -> bool:
        return not self.patches

    def extend(self, other: 'HistoryEntry') -> None:
        """Append another entry's patches, keeping chronological order."""
        self.patches.extend(other.patches)
        self.inverse_patches.extend(other.inverse_patches)
        self.timestamp = other.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            'patches': [patch.to_dict() for patch in self.patches],
            'inversePatches': [patch.to_dict() for patch in self.inverse_patches],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        return cls(
            patches=[as_patch(patch) for patch in data.get('patches', [])],
            inverse_patches=[as_patch(patch) for patch in data.get('inversePatches', [])],
        )


@dataclass(frozen=True)
class SnapshotRecord:
    """Immutable full snapshot of a tree at a point in time."""
    id: str  # UUID string
    timestamp: float
    label: str
    state: Any  # Plain snapshot value

    @classmethod
    def create(cls, state: Any, label: str = "") -> 'SnapshotRecord':
        """Create a new record with auto-generated ID and timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            timestamp=time.time(),
            label=label,
            state=state,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict."""
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'label': self.label,
            'state': self.state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SnapshotRecord':
        return cls(
            id=data['id'],
            timestamp=data['timestamp'],
            label=data.get('label', ""),
            state=data['state'],
        )
