"""Tests for identifier references."""
import asyncio

import pytest

from statetree import (
    UnresolvedReferenceError,
    ValidationError,
    destroy,
    get_snapshot,
    get_state_tree_node,
    model,
    reference,
    resolve_identifier,
    resolve_reference,
    wait_for_identifier,
)


def test_resolve_reference_strict_and_safe(todo_type):
    """Strict resolution raises for a missing target; safe resolution returns None."""
    todo = todo_type.create({"id": "t1"})

    assert resolve_reference("Todo", "t1") is get_state_tree_node(todo)
    with pytest.raises(UnresolvedReferenceError):
        resolve_reference("Todo", "missing")
    assert resolve_reference("Todo", "missing", safe=True) is None
    assert resolve_reference("Todo", None, safe=True) is None


def test_resolve_identifier_accepts_type_or_name(todo_type):
    """resolve_identifier() takes a model type or its name."""
    todo = todo_type.create({"id": "t1"})

    assert resolve_identifier(todo_type, "t1") is get_state_tree_node(todo)
    assert resolve_identifier("Todo", "t1") is get_state_tree_node(todo)


def test_reference_resolves_on_every_read(store):
    """A safe reference reads the live target, then None once it is destroyed."""
    store.select(store.todos[0])

    assert store.selected is store.todos[0]
    assert get_snapshot(store)["selected"] == "t1"

    destroy(store.todos[0])

    assert store.selected is None
    assert get_snapshot(store)["selected"] == "t1"


def test_reference_picks_up_reregistered_target(store):
    """A target destroyed and recreated under the same identifier is found again."""
    store.select("t1")
    destroy(store.todos[0])

    store.add_todo("t1", "again")

    assert store.selected.title == "again"


def test_strict_reference_raises_when_missing(todo_type):
    """Reading a dangling strict reference raises UnresolvedReferenceError."""
    Owner = model("Owner", todo=reference(todo_type))
    owner = Owner.create({"todo": "nope"})

    with pytest.raises(UnresolvedReferenceError):
        owner.todo


def test_reference_rejects_instance_without_identifier(todo_type):
    """Only identified instances can be referenced."""
    Plain = model("Plain", value=0)
    Owner = model("Owner", todo=reference(todo_type))
    owner = Owner.create({"todo": "t1"})

    with pytest.raises(ValidationError):
        owner.todo = Plain.create()


def test_custom_reference_resolvers(todo_type):
    """get/set resolvers replace identifier lookup and serialization."""
    lookup = {"a": "resolved-a"}
    Owner = model("Owner", item=reference(
        todo_type,
        get=lambda identifier, parent: lookup.get(identifier),
        set=lambda value: value.lower(),
    ))
    owner = Owner.create({"item": "a"})

    assert owner.item == "resolved-a"
    owner.item = "A"
    assert get_snapshot(owner) == {"item": "a"}


def test_identifier_change_rebinds(todo_type):
    """Changing the identifier field moves the registry binding."""
    todo = todo_type.create({"id": "t1"})

    todo.id = "t9"

    assert resolve_identifier("Todo", "t1") is None
    assert resolve_identifier("Todo", "t9") is get_state_tree_node(todo)


def test_wait_for_identifier(todo_type):
    """wait_for_identifier() resolves once a matching instance is created."""
    async def scenario():
        waiter = asyncio.ensure_future(wait_for_identifier("Todo", "later", timeout=1.0))
        await asyncio.sleep(0)
        todo = todo_type.create({"id": "later"})
        return todo, await waiter

    todo, node = asyncio.run(scenario())

    assert node is get_state_tree_node(todo)
