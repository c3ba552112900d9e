"""
Lifecycle hooks attached to nodes.

The modeling layer registers hooks on the node it creates; the node runs them
at the matching points of its lifecycle:

- after_create: once the instance is fully built
- after_attach: after the node is placed under a parent
- before_detach: before the node leaves its parent without being destroyed
- before_destroy: before the node (and its subtree) is destroyed
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from statetree.node import StateTreeNode

Hook = Callable[[], None]


@dataclass(frozen=True)
class LifecycleHooks:
    after_create: Optional[Hook] = None
    after_attach: Optional[Hook] = None
    before_detach: Optional[Hook] = None
    before_destroy: Optional[Hook] = None

    def merged(self, other: 'LifecycleHooks') -> 'LifecycleHooks':
        """Hooks set on ``other`` win over the ones set here."""
        overrides = {
            name: getattr(other, name)
            for name in ('after_create', 'after_attach', 'before_detach', 'before_destroy')
            if getattr(other, name) is not None
        }
        return replace(self, **overrides)


def register_hooks(node: 'StateTreeNode', hooks: LifecycleHooks) -> None:
    node.hooks = node.hooks.merged(hooks)


def run_hook(node: 'StateTreeNode', name: str) -> None:
    hook = getattr(node.hooks, name)
    if hook is not None:
        hook()
