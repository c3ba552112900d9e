"""
Tree-wide configuration.

Holds the defaults the history managers and the registries fall back to when
no explicit option is passed. A process-wide base config is set with
set_tree_config(); tree_config() layers temporary overrides on top of it for
the duration of a ``with`` block, scoped with contextvars so nested or
concurrent scopes do not leak into each other.
"""

import contextvars
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeConfig:
    """Defaults for history and registration behaviour."""
    max_history_length: int = 100  # Undo entries kept per manager
    grouping_window: float = 0.2  # Seconds; time-based undo grouping window
    max_snapshots: int = 50  # Time-travel snapshots kept per manager
    registration_timeout: float = 30.0  # Seconds for async registration waits


_base_config: TreeConfig = TreeConfig()

# Scoped overrides pushed by tree_config(); None means "use the base config"
_scoped_config: contextvars.ContextVar[Optional[TreeConfig]] = contextvars.ContextVar(
    'statetree_scoped_config', default=None
)


def set_tree_config(config: TreeConfig) -> None:
    """Replace the process-wide base config."""
    global _base_config
    _base_config = config
    logger.debug(f"Tree config set: {config}")


def get_tree_config() -> TreeConfig:
    """Get the active config (innermost tree_config() scope, else the base)."""
    scoped = _scoped_config.get()
    return scoped if scoped is not None else _base_config


def reset_tree_config() -> None:
    """Restore the built-in defaults."""
    set_tree_config(TreeConfig())


@contextmanager
def tree_config(**overrides: Any) -> Generator[TreeConfig, None, None]:
    """Temporarily override config fields.

    Example:
        with tree_config(max_history_length=5):
            manager = create_undo_manager(store)  # keeps at most 5 entries
    """
    config = dataclasses.replace(get_tree_config(), **overrides)
    token = _scoped_config.set(config)
    try:
        yield config
    finally:
        _scoped_config.reset(token)
