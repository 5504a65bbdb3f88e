"""
Object store adapters.

The lifecycle engine talks to a small set of git primitives through the
``ObjectStore`` contract:

- GitObjectStore: subprocess calls to git plumbing in a real repository
- MemoryObjectStore: git-compatible ids held in memory, for tests and dry runs
"""

from .base import BLOB_MODE, TREE_MODE, UNSET, EntryKind, ObjectStore, TreeEntry
from .git import GitObjectStore
from .memory import MemoryObjectStore, git_object_id

__all__ = [
    "BLOB_MODE",
    "TREE_MODE",
    "UNSET",
    "EntryKind",
    "ObjectStore",
    "TreeEntry",
    "GitObjectStore",
    "MemoryObjectStore",
    "git_object_id",
]
