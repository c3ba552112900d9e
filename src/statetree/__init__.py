"""
Observable hierarchical state tree.

A runtime tree of mutable nodes with structural snapshots, patch-based change
propagation, identifier references that resolve across the tree, and
reversible history (undo/redo and snapshot time travel).

Key Features:
- Nodes with exclusive ownership, path tracking and explicit destruction
- Snapshots (plain dicts/lists) derived from and applied onto subtrees
- JSON-patch style change stream with inverse patches
- Type-partitioned identifier registry for late reference resolution
- Patch-based undo manager and snapshot-based time-travel manager
- Modeling layer: models, arrays, maps, references, scalars

Quick Start:
    >>> from statetree import model, array, identifier, get_snapshot, create_undo_manager
    >>>
    >>> Todo = model("Todo", id=identifier, title="", done=False)
    >>> Store = model("Store", todos=array(Todo)).actions(lambda self: {
    ...     "add": lambda title: self.todos.append({"id": title, "title": title}),
    ... })
    >>>
    >>> store = Store.create()
    >>> undo = create_undo_manager(store)
    >>> store.add("write docs")
    >>> get_snapshot(store)
    {'todos': [{'id': 'write docs', 'title': 'write docs', 'done': False}]}
    >>> undo.undo()
    >>> get_snapshot(store)
    {'todos': []}

Modules:
    - cell: storage cell with change subscribers
    - node: StateTreeNode, the unit of tree structure
    - registry: node, identifier and type registries
    - snapshot / patch / path: snapshot and patch protocol
    - references: identifier resolution
    - actions: action context and action recording
    - undo / time_travel: history managers
    - models: modeling layer
    - tree: public tree API
    - config: tree-wide defaults
"""

from statetree.actions import (
    ActionCall,
    ActionContext,
    ActionRecording,
    add_action_listener,
    apply_action,
    get_running_action_context,
    on_action,
    record_actions,
    remove_action_listener,
    track_action,
)
from statetree.cell import StorageCell
from statetree.config import TreeConfig, get_tree_config, reset_tree_config, set_tree_config, tree_config
from statetree.errors import (
    DeadNodeError,
    HistoryIndexError,
    InvalidPathError,
    RegistrationTimeoutError,
    StateTreeError,
    TypeRegistrationError,
    UnresolvedReferenceError,
    ValidationError,
)
from statetree.history_model import HistoryEntry, SnapshotRecord
from statetree.kinds import NodeKind, TypeDescriptor
from statetree.lifecycle import LifecycleHooks, register_hooks
from statetree.models import (
    ArrayInstance,
    MapInstance,
    ModelInstance,
    ModelType,
    array,
    boolean,
    compose,
    frozen,
    identifier,
    identifier_number,
    integer,
    late_model,
    map_of,
    maybe,
    model,
    number,
    optional,
    reference,
    safe_reference,
    string,
)
from statetree.node import StateTreeNode
from statetree.patch import JsonPatch, PatchRecorder, ReversibleJsonPatch
from statetree.path import escape_segment, join_path, split_path, unescape_segment
from statetree.references import resolve_reference, wait_for_identifier
from statetree.registry import IdentifierRegistry, NodeRegistry, TypeRegistry, clear_all_registries
from statetree.time_travel import TimeTravelManager, create_time_travel_manager
from statetree.tree import (
    apply_patch,
    apply_snapshot,
    clone,
    destroy,
    detach,
    find_all,
    find_first,
    get_env,
    get_identifier,
    get_members,
    get_parent,
    get_parent_of_type,
    get_path,
    get_path_parts,
    get_relative_path,
    get_root,
    get_snapshot,
    get_state_tree_node,
    get_tree_stats,
    get_type,
    has_parent,
    have_same_root,
    is_alive,
    is_ancestor,
    is_root,
    is_state_tree_node,
    on_lifecycle_change,
    on_patch,
    on_snapshot,
    record_patches,
    resolve_identifier,
    resolve_path,
    try_get_parent,
    try_resolve,
    walk,
)
from statetree.undo import UndoManager, UndoState, create_undo_manager

__all__ = [
    # Core
    'StorageCell',
    'StateTreeNode',
    'NodeKind',
    'TypeDescriptor',
    'LifecycleHooks',
    'register_hooks',
    # Registries
    'NodeRegistry',
    'IdentifierRegistry',
    'TypeRegistry',
    'clear_all_registries',
    # Snapshot / patch protocol
    'JsonPatch',
    'ReversibleJsonPatch',
    'PatchRecorder',
    'escape_segment',
    'unescape_segment',
    'split_path',
    'join_path',
    # Public tree API
    'get_snapshot',
    'apply_snapshot',
    'on_snapshot',
    'on_patch',
    'on_lifecycle_change',
    'apply_patch',
    'record_patches',
    'destroy',
    'detach',
    'resolve_identifier',
    'get_root',
    'get_parent',
    'try_get_parent',
    'has_parent',
    'get_parent_of_type',
    'get_path',
    'get_path_parts',
    'get_env',
    'is_alive',
    'is_root',
    'get_type',
    'get_identifier',
    'is_state_tree_node',
    'get_state_tree_node',
    'walk',
    'resolve_path',
    'try_resolve',
    'get_relative_path',
    'is_ancestor',
    'have_same_root',
    'find_all',
    'find_first',
    'get_tree_stats',
    'clone',
    'get_members',
    # References
    'resolve_reference',
    'wait_for_identifier',
    # Actions
    'ActionCall',
    'ActionContext',
    'ActionRecording',
    'add_action_listener',
    'remove_action_listener',
    'apply_action',
    'get_running_action_context',
    'on_action',
    'record_actions',
    'track_action',
    # History
    'UndoManager',
    'UndoState',
    'create_undo_manager',
    'TimeTravelManager',
    'create_time_travel_manager',
    'HistoryEntry',
    'SnapshotRecord',
    # Modeling layer
    'ModelType',
    'ModelInstance',
    'ArrayInstance',
    'MapInstance',
    'model',
    'compose',
    'array',
    'map_of',
    'reference',
    'safe_reference',
    'late_model',
    'optional',
    'maybe',
    'string',
    'number',
    'integer',
    'boolean',
    'frozen',
    'identifier',
    'identifier_number',
    # Configuration
    'TreeConfig',
    'set_tree_config',
    'get_tree_config',
    'reset_tree_config',
    'tree_config',
    # Errors
    'StateTreeError',
    'DeadNodeError',
    'InvalidPathError',
    'UnresolvedReferenceError',
    'RegistrationTimeoutError',
    'HistoryIndexError',
    'TypeRegistrationError',
    'ValidationError',
]

__version__ = '1.0.0'
__description__ = 'Observable hierarchical state tree with snapshots, patches and undo'
