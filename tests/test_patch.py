"""
Tests for the patch protocol.

Tests cover:
- JsonPatch / ReversibleJsonPatch wire format
- replace / add / remove application on models, arrays and maps
- Inverse patches (undoing a recorded sequence restores the snapshot)
- Invalid paths
- PatchRecorder
"""

import pytest

from statetree import (
    InvalidPathError,
    JsonPatch,
    ReversibleJsonPatch,
    apply_patch,
    array,
    clone,
    get_snapshot,
    map_of,
    model,
    number,
    on_patch,
    record_patches,
)
from statetree.patch import as_patch


@pytest.fixture
def bag():
    Bag = model("Bag", name="", items=array(number), counts=map_of(number))
    return Bag.create({"name": "bag", "items": [1, 2], "counts": {"a": 1}})


def capture(target):
    seen = []
    on_patch(target, lambda patch, inverse: seen.append((patch.to_dict(), inverse.to_dict())))
    return seen


class TestWireFormat:
    """Test patch serialization."""

    def test_replace_to_dict(self):
        """Replace patches carry op, path and value."""
        assert JsonPatch("replace", "/count", 5).to_dict() == {"op": "replace", "path": "/count", "value": 5}

    def test_remove_omits_value(self):
        """Remove patches carry no value."""
        assert JsonPatch("remove", "/items/0").to_dict() == {"op": "remove", "path": "/items/0"}

    def test_reversible_patch_carries_old_value(self):
        """Reversible patches export oldValue."""
        patch = ReversibleJsonPatch("replace", "/count", 0, 0)

        assert patch.to_dict() == {"op": "replace", "path": "/count", "value": 0, "oldValue": 0}
        assert ReversibleJsonPatch.from_dict(patch.to_dict()) == patch
        assert patch.as_forward() == JsonPatch("replace", "/count", 0)

    def test_unknown_op_is_rejected(self):
        """Only replace, add and remove are valid ops."""
        with pytest.raises(ValueError):
            JsonPatch("move", "/a")

    def test_as_patch_accepts_dicts(self):
        """Dict patches are converted; oldValue selects the reversible form."""
        assert as_patch({"op": "add", "path": "/a", "value": 1}) == JsonPatch("add", "/a", 1)
        assert isinstance(as_patch({"op": "remove", "path": "/a", "oldValue": 1}), ReversibleJsonPatch)


class TestApply:
    """Test applying patches."""

    def test_replace_model_field(self, bag):
        """Replacing a field emits a replace patch at the field path."""
        seen = capture(bag)

        apply_patch(bag, {"op": "replace", "path": "/name", "value": "box"})

        assert bag.name == "box"
        assert seen == [(
            {"op": "replace", "path": "/name", "value": "box"},
            {"op": "replace", "path": "/name", "value": "bag", "oldValue": "bag"},
        )]

    def test_add_appends_with_dash(self, bag):
        """'-' appends; the forward patch names the resolved index."""
        seen = capture(bag)

        apply_patch(bag, {"op": "add", "path": "/items/-", "value": 3})

        assert list(bag.items) == [1, 2, 3]
        assert seen == [(
            {"op": "add", "path": "/items/2", "value": 3},
            {"op": "remove", "path": "/items/2", "oldValue": None},
        )]

    def test_add_inserts_at_index(self, bag):
        """Adding at an index shifts later entries."""
        apply_patch(bag, {"op": "add", "path": "/items/0", "value": 0})

        assert list(bag.items) == [0, 1, 2]
        assert get_snapshot(bag)["items"] == [0, 1, 2]

    def test_remove_from_array(self, bag):
        """Removing emits an inverse add carrying the removed value."""
        seen = capture(bag)

        apply_patch(bag, {"op": "remove", "path": "/items/0"})

        assert list(bag.items) == [2]
        assert seen == [(
            {"op": "remove", "path": "/items/0"},
            {"op": "add", "path": "/items/0", "value": 1, "oldValue": 1},
        )]

    def test_replace_array_entry(self, bag):
        """Replacing a leaf entry updates the stored list."""
        apply_patch(bag, {"op": "replace", "path": "/items/1", "value": 9})
        bag.items.append(10)

        assert list(bag.items) == [1, 9, 10]

    def test_add_new_map_key(self, bag):
        """Adding a new key has a remove as inverse."""
        seen = capture(bag)

        apply_patch(bag, {"op": "add", "path": "/counts/b", "value": 2})

        assert dict(bag.counts) == {"a": 1, "b": 2}
        assert seen[0][1] == {"op": "remove", "path": "/counts/b", "oldValue": None}

    def test_add_existing_map_key(self, bag):
        """Adding over an existing key has a replace with the old value as inverse."""
        seen = capture(bag)

        apply_patch(bag, {"op": "add", "path": "/counts/a", "value": 5})

        assert bag.counts["a"] == 5
        assert seen[0][1] == {"op": "replace", "path": "/counts/a", "value": 1, "oldValue": 1}

    def test_replace_missing_map_key_is_reversible(self, bag):
        """Replacing a missing key inserts it; its inverse removes it again."""
        before = get_snapshot(bag)
        seen = capture(bag)

        apply_patch(bag, {"op": "replace", "path": "/counts/new", "value": 7})

        assert bag.counts["new"] == 7
        assert seen[0][1] == {"op": "remove", "path": "/counts/new", "oldValue": None}

        apply_patch(bag, [inverse for _, inverse in reversed(seen)])
        assert get_snapshot(bag) == before

    def test_remove_map_key(self, bag):
        """Removing a key drops it from the map."""
        apply_patch(bag, {"op": "remove", "path": "/counts/a"})

        assert dict(bag.counts) == {}

    def test_replace_root(self, bag):
        """An empty path with replace applies a snapshot to the root."""
        apply_patch(bag, {"op": "replace", "path": "", "value": {"name": "root", "items": []}})

        assert get_snapshot(bag) == {"name": "root", "items": [], "counts": {"a": 1}}

    def test_apply_list_of_patches_in_order(self, bag):
        """A list of patches is applied first to last."""
        apply_patch(bag, [
            {"op": "add", "path": "/items/-", "value": 3},
            {"op": "remove", "path": "/items/0"},
        ])

        assert list(bag.items) == [2, 3]

    def test_apply_from_subtree_resolves_from_root(self, bag):
        """Paths are absolute even when a descendant is passed."""
        apply_patch(bag.items, {"op": "replace", "path": "/name", "value": "via child"})

        assert bag.name == "via child"


class TestInvalidPaths:
    """Test path errors."""

    def test_missing_intermediate_segment(self, bag):
        """A missing intermediate child raises InvalidPathError."""
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "replace", "path": "/missing/x", "value": 1})

    def test_index_out_of_range(self, bag):
        """Array indexes past the end raise InvalidPathError."""
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "remove", "path": "/items/5"})
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "add", "path": "/items/7", "value": 1})

    def test_unknown_model_field(self, bag):
        """Models have no dynamic keys."""
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "replace", "path": "/unknown", "value": 1})
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "add", "path": "/unknown", "value": 1})

    def test_remove_missing_map_key(self, bag):
        """Removing a key that is not there raises InvalidPathError."""
        with pytest.raises(InvalidPathError):
            apply_patch(bag, {"op": "remove", "path": "/counts/zzz"})

    def test_earlier_patches_are_kept_on_failure(self, bag):
        """A failing patch does not roll back patches applied before it."""
        with pytest.raises(InvalidPathError):
            apply_patch(bag, [
                {"op": "replace", "path": "/name", "value": "first"},
                {"op": "remove", "path": "/items/9"},
            ])

        assert bag.name == "first"


class TestRecorder:
    """Test PatchRecorder and patch reversibility."""

    def test_records_until_stopped(self, bag):
        """Only patches emitted before stop() are kept."""
        recorder = record_patches(bag)
        bag.name = "one"
        recorder.stop()
        bag.name = "two"

        assert [patch.value for patch in recorder.patches] == ["one"]
        assert not recorder.is_recording

    def test_undo_restores_snapshot(self, bag):
        """Applying recorded inverse patches newest first restores the original state."""
        before = get_snapshot(bag)
        recorder = record_patches(bag)

        bag.name = "changed"
        bag.items.append(3)
        apply_patch(bag, {"op": "remove", "path": "/items/0"})
        bag.counts["z"] = 26
        apply_patch(bag, {"op": "add", "path": "/counts/a", "value": 100})
        recorder.stop()

        recorder.undo(bag)

        assert get_snapshot(bag) == before

    def test_replay_reproduces_changes(self, bag):
        """Replaying forward patches onto a copy reproduces the final state."""
        copy = clone(bag)
        recorder = record_patches(bag)

        bag.items.append(3)
        apply_patch(bag, {"op": "remove", "path": "/counts/a"})
        recorder.stop()
        recorder.replay(copy)

        assert get_snapshot(copy) == get_snapshot(bag)
        assert len(recorder.pairs()) == 2
