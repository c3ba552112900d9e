"""Pytest configuration and shared fixtures."""
import pytest

import statetree.actions as actions_module
from statetree import (
    array,
    clear_all_registries,
    identifier,
    map_of,
    model,
    reset_tree_config,
    safe_reference,
)


@pytest.fixture(autouse=True)
def reset_registries_and_config():
    """Start every test with empty registries and default tree config."""
    clear_all_registries()
    reset_tree_config()
    original_listeners = list(actions_module._action_listeners)

    yield

    clear_all_registries()
    reset_tree_config()
    actions_module._action_listeners.clear()
    actions_module._action_listeners.extend(original_listeners)


@pytest.fixture
def counter_type():
    """Model with a single numeric field and an increment action."""
    return model("Counter", count=0).actions(lambda self: {
        "increment": lambda: setattr(self, "count", self.count + 1),
        "add": lambda amount: setattr(self, "count", self.count + amount),
    })


@pytest.fixture
def todo_type():
    """Model with an identifier and a toggle action."""
    return model("Todo", id=identifier, title="", done=False).actions(lambda self: {
        "toggle": lambda: setattr(self, "done", not self.done),
    })


@pytest.fixture
def store_type(todo_type):
    """Store holding todos, a tag map and a safe reference to the selected todo."""
    return model(
        "Store",
        todos=array(todo_type),
        tags=map_of(""),
        selected=safe_reference(todo_type),
    ).actions(lambda self: {
        "add_todo": lambda todo_id, title: self.todos.append({"id": todo_id, "title": title}),
        "select": lambda todo: setattr(self, "selected", todo),
    })


@pytest.fixture
def store(store_type):
    return store_type.create({
        "todos": [
            {"id": "t1", "title": "write docs"},
            {"id": "t2", "title": "ship it", "done": True},
        ],
    })
