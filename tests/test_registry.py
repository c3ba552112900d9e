"""
Tests for the node, identifier and type registries.

Async waits are driven with asyncio.run() inside plain tests.
"""

import asyncio
import logging

import pytest

from statetree import (
    IdentifierRegistry,
    NodeKind,
    NodeRegistry,
    RegistrationTimeoutError,
    StateTreeNode,
    TypeDescriptor,
    TypeRegistrationError,
    TypeRegistry,
    clear_all_registries,
    model,
)

RECORD = TypeDescriptor(NodeKind.MODEL, "Record")


class TestNodeRegistry:
    """Test the global node index."""

    def test_stats_count_live_nodes(self):
        """get_stats() reports live nodes and identifier bindings."""
        first = StateTreeNode(RECORD, {})
        second = StateTreeNode(RECORD, {})
        first.register_identifier("Record", "r1")

        stats = NodeRegistry.get_stats()

        assert stats['live_node_count'] == 2
        assert stats['stale_node_count'] == 0
        assert stats['identifier_registry_size'] == 1
        assert stats['identifier_type_count'] == 1
        assert NodeRegistry.size() == 2
        assert second.is_alive

    def test_cleanup_removes_dead_entries(self):
        """Entries for nodes marked dead without destroy() are swept."""
        node = StateTreeNode(RECORD, {})
        node.register_identifier("Record", "r1")
        node.is_alive = False

        cleaned = NodeRegistry.cleanup_stale_entries()

        assert cleaned == 2
        assert NodeRegistry.get(node.node_id) is None
        assert IdentifierRegistry.type_count() == 0

    def test_clear_marks_nodes_dead(self):
        """clear_all_registries() kills every tracked node."""
        node = StateTreeNode(RECORD, {})

        clear_all_registries()

        assert not node.is_alive
        assert NodeRegistry.size() == 0


class TestIdentifierRegistry:
    """Test identifier bindings."""

    def test_register_and_resolve(self):
        """Nodes resolve by (type name, identifier)."""
        node = StateTreeNode(RECORD, {})
        node.register_identifier("Record", "r1")

        assert IdentifierRegistry.resolve("Record", "r1") is node
        assert IdentifierRegistry.resolve("Other", "r1") is None
        assert IdentifierRegistry.get_nodes_of_type("Record") == [node]

    def test_partitions_are_independent(self):
        """The same identifier can be bound once per type."""
        first = StateTreeNode(RECORD, {})
        second = StateTreeNode(RECORD, {})
        first.register_identifier("A", 1)
        second.register_identifier("B", 1)

        assert IdentifierRegistry.resolve("A", 1) is first
        assert IdentifierRegistry.resolve("B", 1) is second

    def test_rebinding_replaces_previous_identifier(self):
        """A node holds at most one binding."""
        node = StateTreeNode(RECORD, {})
        node.register_identifier("Record", "old")
        node.register_identifier("Record", "new")

        assert IdentifierRegistry.resolve("Record", "old") is None
        assert IdentifierRegistry.resolve("Record", "new") is node

    def test_unregister_ignores_other_owner(self):
        """Unregistering does not remove a binding that now points elsewhere."""
        first = StateTreeNode(RECORD, {})
        second = StateTreeNode(RECORD, {})
        first.register_identifier("Record", "r1")
        second.register_identifier("Record", "r1")

        first.unregister_identifier()

        assert IdentifierRegistry.resolve("Record", "r1") is second

    def test_overwrite_logs_warning(self, caplog):
        """Binding an identifier owned by another live node logs a warning."""
        first = StateTreeNode(RECORD, {})
        second = StateTreeNode(RECORD, {})
        first.register_identifier("Record", "r1")

        with caplog.at_level(logging.WARNING, logger="statetree.registry"):
            second.register_identifier("Record", "r1")

        assert "Overwriting identifier binding" in caplog.text

    def test_empty_partition_is_pruned(self):
        """The last unregister drops the type partition."""
        node = StateTreeNode(RECORD, {})
        node.register_identifier("Record", "r1")

        node.unregister_identifier()

        assert IdentifierRegistry.type_count() == 0

    def test_wait_for_resolves_on_registration(self):
        """wait_for() completes when the identifier is registered later."""
        async def scenario():
            waiter = asyncio.ensure_future(IdentifierRegistry.wait_for("Record", "late", timeout=1.0))
            await asyncio.sleep(0)
            node = StateTreeNode(RECORD, {})
            node.register_identifier("Record", "late")
            return node, await waiter

        node, resolved = asyncio.run(scenario())

        assert resolved is node

    def test_wait_for_returns_existing_node(self):
        """wait_for() returns immediately when the node is already registered."""
        node = StateTreeNode(RECORD, {})
        node.register_identifier("Record", "r1")

        resolved = asyncio.run(IdentifierRegistry.wait_for("Record", "r1", timeout=0.01))

        assert resolved is node

    def test_wait_for_times_out(self):
        """wait_for() raises RegistrationTimeoutError after the timeout."""
        with pytest.raises(RegistrationTimeoutError) as exc_info:
            asyncio.run(IdentifierRegistry.wait_for("Record", "never", timeout=0.01))

        assert exc_info.value.timeout == 0.01
        assert IdentifierRegistry._waiters == {}


class TestTypeRegistry:
    """Test name-based type registration."""

    def test_register_and_resolve(self):
        """Registered types resolve by name and keep their metadata."""
        Todo = model("Todo", title="")
        TypeRegistry.register("Todo", Todo, {"version": 2})

        assert TypeRegistry.resolve("Todo") is Todo
        assert TypeRegistry.is_registered("Todo")
        assert TypeRegistry.get_metadata("Todo") == {"version": 2}
        assert TypeRegistry.get_names() == ["Todo"]

    def test_duplicate_registration_raises(self):
        """A name can only be registered once."""
        Todo = model("Todo", title="")
        TypeRegistry.register("Todo", Todo)

        with pytest.raises(TypeRegistrationError):
            TypeRegistry.register("Todo", Todo)

    def test_unregister(self):
        """unregister() frees the name."""
        Todo = model("Todo", title="")
        TypeRegistry.register("Todo", Todo)

        assert TypeRegistry.unregister("Todo")
        assert not TypeRegistry.unregister("Todo")
        assert TypeRegistry.try_resolve("Todo") is None

    def test_resolve_missing_raises(self):
        """resolve() of an unknown name raises; try_resolve() returns None."""
        with pytest.raises(TypeRegistrationError):
            TypeRegistry.resolve("Missing")
        assert TypeRegistry.try_resolve("Missing") is None

    def test_register_callbacks(self):
        """Callbacks receive (name, type); the disposer unsubscribes."""
        seen = []
        dispose = TypeRegistry.add_register_callback(lambda name, type_: seen.append(name))
        TypeRegistry.register("A", model("A"))
        dispose()
        TypeRegistry.register("B", model("B"))

        assert seen == ["A"]

    def test_failing_callback_is_logged(self, caplog):
        """A raising callback is logged and does not block registration."""
        def broken(name, type_):
            raise RuntimeError("boom")

        TypeRegistry.add_register_callback(broken)
        with caplog.at_level(logging.WARNING, logger="statetree.registry"):
            TypeRegistry.register("A", model("A"))

        assert TypeRegistry.is_registered("A")
        assert "Error in type register callback: boom" in caplog.text

    def test_resolve_async_waits_for_registration(self):
        """resolve_async() completes once the type is registered."""
        Late = model("Late")

        async def scenario():
            waiter = asyncio.ensure_future(TypeRegistry.resolve_async("Late", timeout=1.0))
            await asyncio.sleep(0)
            TypeRegistry.register("Late", Late)
            return await waiter

        assert asyncio.run(scenario()) is Late

    def test_resolve_async_times_out(self):
        """resolve_async() raises RegistrationTimeoutError after the timeout."""
        with pytest.raises(RegistrationTimeoutError):
            asyncio.run(TypeRegistry.resolve_async("Never", timeout=0.01))
