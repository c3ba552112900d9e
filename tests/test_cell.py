"""Tests for the storage cell."""
from statetree import StorageCell


def test_get_returns_initial_value():
    """A new cell holds its initial value."""
    assert StorageCell(3).get() == 3
    assert StorageCell().get() is None


def test_set_notifies_with_new_and_old_value():
    """Subscribers receive (new_value, old_value)."""
    cell = StorageCell("a")
    seen = []
    cell.subscribe(lambda new, old: seen.append((new, old)))

    cell.set("b")
    cell.set("c")

    assert seen == [("b", "a"), ("c", "b")]
    assert cell.get() == "c"


def test_disposer_unsubscribes():
    """Calling the returned disposer stops notifications."""
    cell = StorageCell(0)
    seen = []
    dispose = cell.subscribe(lambda new, old: seen.append(new))

    cell.set(1)
    dispose()
    cell.set(2)

    assert seen == [1]


def test_subscriber_may_unsubscribe_while_notified():
    """Unsubscribing during notification does not skip other subscribers."""
    cell = StorageCell(0)
    seen = []
    disposers = []

    def first(new, old):
        seen.append(("first", new))
        disposers[0]()

    disposers.append(cell.subscribe(first))
    cell.subscribe(lambda new, old: seen.append(("second", new)))

    cell.set(1)
    cell.set(2)

    assert seen == [("first", 1), ("second", 1), ("second", 2)]


def test_clear_subscribers():
    """clear_subscribers() drops every subscriber."""
    cell = StorageCell(0)
    seen = []
    cell.subscribe(lambda new, old: seen.append(new))
    cell.clear_subscribers()

    cell.set(5)

    assert seen == []
