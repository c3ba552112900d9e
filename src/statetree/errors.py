"""
Exception hierarchy for the state tree.

Every structural failure is raised straight to the caller of the mutating or
resolving operation. Nothing here is recovered automatically; the only
intentional suppression lives in safe references and in the history managers'
replay guards.
"""

from typing import Any, Optional


class StateTreeError(Exception):
    """Base class for all state tree errors."""


class DeadNodeError(StateTreeError):
    """Mutation attempted on a node that has been destroyed."""

    def __init__(self, type_name: str, path: str, action: str = "modify"):
        self.type_name = type_name
        self.path = path
        super().__init__(
            f"Cannot {action} a node that is no longer part of the state tree "
            f"(node type: '{type_name}', path: '{path}')"
        )


class InvalidPathError(StateTreeError):
    """A path segment has no corresponding child."""

    def __init__(self, path: str, segment: Optional[str] = None):
        self.path = path
        self.segment = segment
        detail = f" (no child '{segment}')" if segment is not None else ""
        super().__init__(f"Invalid path: '{path}'{detail}")


class UnresolvedReferenceError(StateTreeError):
    """A reference could not be resolved to a live node."""

    def __init__(self, type_name: str, identifier: Any):
        self.type_name = type_name
        self.identifier = identifier
        super().__init__(
            f"Failed to resolve reference '{identifier}' to type '{type_name}'"
        )


class RegistrationTimeoutError(StateTreeError):
    """An asynchronous wait for a registration exceeded its deadline."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"Timeout after {timeout}s waiting for {what} to be registered")


class HistoryIndexError(StateTreeError, IndexError):
    """History position outside the retained window."""


class TypeRegistrationError(StateTreeError):
    """A type name is already registered."""


class ValidationError(StateTreeError, ValueError):
    """A value does not match the declared type of a field."""
