"""Integration tests for statetree.

Tests usage patterns that combine models, patches, references and history.
"""
import json

from statetree import (
    apply_patch,
    array,
    create_time_travel_manager,
    create_undo_manager,
    destroy,
    get_snapshot,
    identifier,
    model,
    number,
    on_patch,
    on_snapshot,
    record_actions,
    resolve_identifier,
)


def test_readme_quick_start_example():
    """Test the quick start example from the package docstring."""
    Todo = model("Todo", id=identifier, title="", done=False)
    Store = model("Store", todos=array(Todo)).actions(lambda self: {
        "add": lambda title: self.todos.append({"id": title, "title": title}),
    })

    store = Store.create()
    undo = create_undo_manager(store)
    store.add("write docs")

    assert get_snapshot(store) == {"todos": [{"id": "write docs", "title": "write docs", "done": False}]}
    undo.undo()
    assert get_snapshot(store) == {"todos": []}


def test_set_value_emits_one_patch_and_one_snapshot():
    """Setting a field emits exactly one patch and one root snapshot."""
    Counter = model("Counter", count=0)
    counter = Counter.create()
    patches = []
    snapshots = []
    on_patch(counter, lambda patch, inverse: patches.append(patch.to_dict()))
    on_snapshot(counter, snapshots.append)

    counter.count = 5

    assert patches == [{"op": "replace", "path": "/count", "value": 5}]
    assert snapshots == [{"count": 5}]


def test_identifier_lifecycle():
    """An identified instance resolves until it is destroyed."""
    Todo = model("Todo", id=identifier, title="")
    todo = Todo.create({"id": "a", "title": "x"})

    assert resolve_identifier(Todo, "a") is not None

    destroy(todo)

    assert resolve_identifier(Todo, "a") is None


def test_grouped_increments_undo_as_one():
    """Three increments in one group are one undo level."""
    Counter = model("Counter", count=0).actions(lambda self: {
        "increment": lambda: setattr(self, "count", self.count + 1),
    })
    counter = Counter.create()
    manager = create_undo_manager(counter)

    with manager.group():
        counter.increment()
        counter.increment()
        counter.increment()

    assert counter.count == 3
    assert manager.undo_levels == 1
    manager.undo()
    assert counter.count == 0


def test_append_patch_and_inverse():
    """Appending with '-' grows the list and yields a remove at the new index."""
    Bag = model("Bag", items=array(number))
    bag = Bag.create({"items": [1, 2]})
    inverses = []
    on_patch(bag, lambda patch, inverse: inverses.append(inverse.to_dict()))

    apply_patch(bag, {"op": "add", "path": "/items/-", "value": 3})

    assert get_snapshot(bag)["items"] == [1, 2, 3]
    assert len(bag.items) == 3
    assert inverses[0]["op"] == "remove"
    assert inverses[0]["path"] == "/items/2"


def test_patch_stream_syncs_two_trees(store_type, store):
    """Forwarding the patch stream keeps a replica identical."""
    replica = store_type.create(get_snapshot(store))
    on_patch(store, lambda patch, inverse: apply_patch(replica, patch))

    store.add_todo("t3", "three")
    store.todos[0].toggle()
    destroy(store.todos[1])
    store.tags["prio"] = "high"
    store.select(store.todos[0])

    assert get_snapshot(replica) == get_snapshot(store)


def test_patches_survive_json(store_type, store):
    """Patches serialized to JSON replay identically."""
    wire = []
    on_patch(store, lambda patch, inverse: wire.append(json.dumps(patch.to_dict())))
    replica = store_type.create(get_snapshot(store))

    store.add_todo("t3", "three")
    apply_patch(store, {"op": "replace", "path": "/todos/2/done", "value": True})

    apply_patch(replica, [json.loads(item) for item in wire])
    assert get_snapshot(replica) == get_snapshot(store)


def test_undo_and_time_travel_together(store):
    """Undo and time travel observe the same tree without interfering."""
    manager = create_undo_manager(store)
    travel = create_time_travel_manager(store)
    initial = get_snapshot(store)

    store.add_todo("t3", "three")
    travel.record("added")
    store.todos[2].toggle()

    manager.undo()
    assert store.todos[2].done is False
    assert get_snapshot(store) == travel.get_snapshot(1)

    with manager.group():
        travel.go_to(0)
    assert get_snapshot(store) == initial

    # Travel is itself a change and can be undone
    manager.undo()
    assert get_snapshot(store) == travel.get_snapshot(1)


def test_recorded_actions_replay_on_fresh_tree(store_type, store):
    """A recorded session replays onto a new tree from the same start."""
    start = get_snapshot(store)
    recording = record_actions(store)

    store.add_todo("t3", "three")
    store.todos[2].toggle()
    store.select(store.todos[2])
    recording.stop()

    fresh = store_type.create(start)
    recording.replay(fresh)

    assert get_snapshot(fresh) == get_snapshot(store)
