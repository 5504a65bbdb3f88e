"""
Abstract object store interface.

Defines the contract the lifecycle engine consumes: content-addressed
blobs, trees of named entries, mutable refs with compare-and-set updates,
commit notes and a few commit lookups. The git repository is the
production implementation; an in-memory store backs tests and dry runs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..exceptions import CommitResolutionError, ObjectStoreError

BLOB_MODE = "100644"
TREE_MODE = "040000"


class EntryKind(Enum):
    """Kind of object a tree entry points at."""

    BLOB = "blob"
    TREE = "tree"


class _Unset:
    """Sentinel type for "no compare-and-set expectation"."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


@dataclass(frozen=True)
class TreeEntry:
    """A single named entry in a tree object.

    Entries are immutable: rebuilding a tree produces new entry lists and
    passes untouched entries through by value.
    """

    name: str
    oid: str
    kind: EntryKind = EntryKind.BLOB
    mode: str = BLOB_MODE

    @classmethod
    def blob(cls, name: str, oid: str) -> TreeEntry:
        return cls(name=name, oid=oid, kind=EntryKind.BLOB, mode=BLOB_MODE)

    @classmethod
    def tree(cls, name: str, oid: str) -> TreeEntry:
        return cls(name=name, oid=oid, kind=EntryKind.TREE, mode=TREE_MODE)

    @property
    def is_tree(self) -> bool:
        return self.kind is EntryKind.TREE


class ObjectStore(ABC):
    """Versioned object store consumed by the transcript and note managers.

    All methods are synchronous. Implementations raise
    ``ObjectStoreError`` for read/write failures and
    ``CommitResolutionError`` for bad commit references.
    """

    # Objects

    @abstractmethod
    def hash_blob(self, data: bytes) -> str:
        """Write ``data`` as a blob and return its content-derived id."""

    @abstractmethod
    def read_blob(self, oid: str) -> bytes:
        """Return the bytes of blob ``oid``."""

    @abstractmethod
    def read_tree(self, oid: str) -> list[TreeEntry]:
        """Return the entries of tree ``oid``."""

    @abstractmethod
    def create_tree(self, entries: list[TreeEntry]) -> str:
        """Write a tree object and return its id."""

    # Refs

    @abstractmethod
    def get_ref(self, name: str) -> str | None:
        """Return the id a ref points at, or None if the ref does not exist."""

    @abstractmethod
    def update_ref(self, name: str, oid: str, expected: str | None | _Unset = UNSET) -> None:
        """Point ``name`` at ``oid``.

        When ``expected`` is given the update is a compare-and-set: it
        raises ``RefUpdateConflictError`` unless the ref still points at
        ``expected`` (None meaning the ref must not exist yet).
        """

    def get_blob(self, ref: str, path: str) -> bytes | None:
        """Return the blob at ``path`` inside the tree ``ref`` points at.

        Returns None if the ref, any intermediate tree or the blob is
        missing.
        """
        oid = self.get_ref(ref)
        if oid is None:
            return None
        parts = [p for p in path.split("/") if p]
        for index, part in enumerate(parts):
            entries = {e.name: e for e in self.read_tree(oid)}
            entry = entries.get(part)
            if entry is None:
                return None
            is_last = index == len(parts) - 1
            if is_last == entry.is_tree:
                return None
            oid = entry.oid
        return self.read_blob(oid)

    # Commits

    @abstractmethod
    def resolve_commit(self, rev: str) -> str:
        """Resolve a commit-ish to a full commit id."""

    @abstractmethod
    def list_commits(self, range_spec: str) -> list[str]:
        """List commits in ``range_spec`` (e.g. ``A..B``), newest first."""

    @abstractmethod
    def commit_timestamp(self, commit: str) -> datetime | None:
        """Return the commit's author timestamp, or None if unavailable."""

    @abstractmethod
    def parent_commit(self, commit: str) -> str | None:
        """Return the first parent of ``commit``, or None for a root commit."""

    @abstractmethod
    def commit_message(self, commit: str) -> str:
        """Return the full commit message."""

    # Notes

    @abstractmethod
    def get_note(self, ref: str, commit: str) -> str | None:
        """Return the note text attached to ``commit`` under ``ref``."""

    @abstractmethod
    def set_note(self, ref: str, commit: str, text: str) -> None:
        """Attach (or overwrite) the note on ``commit`` under ``ref``."""

    @abstractmethod
    def list_noted_commits(self, ref: str) -> list[str]:
        """Return every commit that has a note under ``ref``."""

    # Remotes (advisory)

    def remote_ref(self, remote: str, ref: str) -> str | None:
        """Return the id ``ref`` has on ``remote``, or None if unknown."""
        return None

    def push_ref(self, remote: str, ref: str, force: bool = False) -> None:
        """Push ``ref`` to ``remote``.

        Raises:
            ObjectStoreError: If the push fails or this store cannot push
        """
        cause = NotImplementedError(f"{type(self).__name__} cannot push")
        raise ObjectStoreError("push_ref", f"{remote} {ref}", cause)

    # Convenience

    def resolve_commits(self, spec: str) -> list[str]:
        """Resolve a single commit-ish or an ``A..B`` range to commit ids."""
        if ".." in spec:
            commits = self.list_commits(spec)
            if not commits:
                raise CommitResolutionError(spec, "no commits in range")
            return commits
        return [self.resolve_commit(spec)]
