"""
Identifier-based reference resolution.

References hold only an identifier value and resolve it against the
IdentifierRegistry on every access; nothing is cached, so a target that is
destroyed and re-registered under the same identifier is picked up by the
next access.
"""

import logging
from typing import Any, Optional, TYPE_CHECKING

from statetree.errors import UnresolvedReferenceError
from statetree.registry import IdentifierRegistry

if TYPE_CHECKING:
    from statetree.node import StateTreeNode

logger = logging.getLogger(__name__)


def resolve_identifier(type_name: str, identifier: Any) -> Optional['StateTreeNode']:
    """Synchronous lookup. Returns None (not an error) when nothing live is registered."""
    return IdentifierRegistry.resolve(type_name, identifier)


def resolve_reference(type_name: str, identifier: Any, safe: bool = False) -> Optional['StateTreeNode']:
    """Resolve a reference target.

    Args:
        type_name: identifier partition of the target type
        identifier: the stored reference value
        safe: return None instead of raising when the target is missing

    Raises:
        UnresolvedReferenceError: no live target and ``safe`` is False.
    """
    if identifier is None:
        if safe:
            return None
        raise UnresolvedReferenceError(type_name, identifier)

    node = IdentifierRegistry.resolve(type_name, identifier)
    if node is None:
        if safe:
            logger.debug(f"Safe reference {type_name}:{identifier!r} is unresolved")
            return None
        raise UnresolvedReferenceError(type_name, identifier)
    return node


async def wait_for_identifier(
    type_name: str,
    identifier: Any,
    timeout: Optional[float] = None,
) -> 'StateTreeNode':
    """Resolve now, or wait for a node to register under (type_name, identifier).

    ``timeout`` defaults to the configured registration_timeout.

    Raises:
        RegistrationTimeoutError: nothing registered in time.
    """
    return await IdentifierRegistry.wait_for(type_name, identifier, timeout)
