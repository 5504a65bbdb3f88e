"""
In-memory object store.

Object ids are computed exactly as git computes them (SHA-1 over the
typed object header and body), so ids produced here match what a real
repository would produce for the same blobs and trees. Used by the test
suite and by dry runs that must not touch the repository.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from ..exceptions import CommitResolutionError, ObjectStoreError, RefUpdateConflictError
from ..time_utils import format_timestamp, to_utc
from .base import UNSET, ObjectStore, TreeEntry, _Unset

logger = logging.getLogger(__name__)

_REV_SUFFIX = re.compile(r"^(?P<base>.+?)(?P<ops>(?:~\d*|\^)*)$")


def git_object_id(kind: str, body: bytes) -> str:
    """Return the SHA-1 id git assigns to an object of ``kind``."""
    header = f"{kind} {len(body)}\0".encode()
    return hashlib.sha1(header + body).hexdigest()


def _tree_body(entries: list[TreeEntry]) -> bytes:
    # git sorts tree entries as if subtree names ended with "/"
    def sort_key(entry: TreeEntry) -> bytes:
        name = entry.name.encode("utf-8")
        return name + b"/" if entry.is_tree else name

    body = b""
    for entry in sorted(entries, key=sort_key):
        mode = entry.mode.lstrip("0") or "0"
        body += f"{mode} {entry.name}".encode() + b"\0" + bytes.fromhex(entry.oid)
    return body


@dataclass
class _Commit:
    sha: str
    message: str
    timestamp: datetime | None
    parent: str | None


@dataclass
class MemoryObjectStore(ObjectStore):
    """Object store held entirely in process memory.

    ``add_commit`` builds a linear or branching commit graph for tests;
    ``HEAD`` follows the most recently added commit.
    """

    blobs: dict[str, bytes] = field(default_factory=dict)
    trees: dict[str, list[TreeEntry]] = field(default_factory=dict)
    refs: dict[str, str] = field(default_factory=dict)
    notes: dict[str, dict[str, str]] = field(default_factory=dict)
    commits: dict[str, _Commit] = field(default_factory=dict)
    remotes: dict[tuple[str, str], str] = field(default_factory=dict)
    head: str | None = None

    # Test helpers

    def add_commit(
        self,
        message: str,
        timestamp: datetime | None = None,
        parent: str | None | _Unset = UNSET,
    ) -> str:
        """Record a commit and move HEAD to it.

        ``parent`` defaults to the current HEAD; pass None for a root commit.
        """
        if isinstance(parent, _Unset):
            parent = self.head
        stamp = format_timestamp(timestamp) if timestamp else "unknown"
        body = f"parent {parent or '-'}\ndate {stamp}\n\n{message}".encode()
        sha = git_object_id("commit", body)
        self.commits[sha] = _Commit(
            sha=sha,
            message=message,
            timestamp=to_utc(timestamp) if timestamp else None,
            parent=parent,
        )
        self.head = sha
        return sha

    def set_remote_ref(self, remote: str, ref: str, oid: str) -> None:
        self.remotes[(remote, ref)] = oid

    # Objects

    def hash_blob(self, data: bytes) -> str:
        oid = git_object_id("blob", data)
        self.blobs[oid] = bytes(data)
        return oid

    def read_blob(self, oid: str) -> bytes:
        try:
            return self.blobs[oid]
        except KeyError as e:
            raise ObjectStoreError("read_blob", oid, e) from e

    def read_tree(self, oid: str) -> list[TreeEntry]:
        try:
            return list(self.trees[oid])
        except KeyError as e:
            raise ObjectStoreError("read_tree", oid, e) from e

    def create_tree(self, entries: list[TreeEntry]) -> str:
        names = [e.name for e in entries]
        if len(names) != len(set(names)):
            raise ObjectStoreError("create_tree", None, ValueError("duplicate entry names"))
        for entry in entries:
            known = self.trees if entry.is_tree else self.blobs
            if entry.oid not in known:
                raise ObjectStoreError(
                    "create_tree", entry.name, KeyError(f"missing {entry.kind.value} {entry.oid}")
                )
        oid = git_object_id("tree", _tree_body(entries))
        self.trees[oid] = list(entries)
        return oid

    # Refs

    def get_ref(self, name: str) -> str | None:
        return self.refs.get(name)

    def update_ref(self, name: str, oid: str, expected: str | None | _Unset = UNSET) -> None:
        if not isinstance(expected, _Unset):
            actual = self.refs.get(name)
            if actual != expected:
                raise RefUpdateConflictError(name, expected, actual)
        self.refs[name] = oid
        logger.debug("Updated %s -> %s", name, oid[:12])

    # Commits

    def resolve_commit(self, rev: str) -> str:
        match = _REV_SUFFIX.match(rev.strip())
        if not match:
            raise CommitResolutionError(rev)
        sha = self._resolve_base(match.group("base"))
        if sha is None:
            raise CommitResolutionError(rev)
        for op in re.findall(r"~\d*|\^", match.group("ops")):
            steps = 1 if op in ("^", "~") else int(op[1:])
            for _ in range(steps):
                sha = self.commits[sha].parent
                if sha is None:
                    raise CommitResolutionError(rev, "walked past root commit")
        return sha

    def _resolve_base(self, base: str) -> str | None:
        if base == "HEAD":
            return self.head
        if base in self.commits:
            return base
        if base in self.refs and self.refs[base] in self.commits:
            return self.refs[base]
        if len(base) >= 4:
            matches = [sha for sha in self.commits if sha.startswith(base)]
            if len(matches) == 1:
                return matches[0]
        return None

    def _ancestors(self, sha: str | None) -> list[str]:
        chain = []
        while sha is not None:
            chain.append(sha)
            sha = self.commits[sha].parent
        return chain

    def list_commits(self, range_spec: str) -> list[str]:
        if ".." in range_spec:
            since, _, until = range_spec.partition("..")
            excluded = set(self._ancestors(self.resolve_commit(since or "HEAD")))
            tip = self.resolve_commit(until or "HEAD")
        else:
            excluded = set()
            tip = self.resolve_commit(range_spec)
        return [sha for sha in self._ancestors(tip) if sha not in excluded]

    def commit_timestamp(self, commit: str) -> datetime | None:
        entry = self.commits.get(commit)
        return entry.timestamp if entry else None

    def parent_commit(self, commit: str) -> str | None:
        entry = self.commits.get(commit)
        return entry.parent if entry else None

    def commit_message(self, commit: str) -> str:
        entry = self.commits.get(commit)
        if entry is None:
            raise CommitResolutionError(commit)
        return entry.message

    # Notes

    def get_note(self, ref: str, commit: str) -> str | None:
        return self.notes.get(ref, {}).get(commit)

    def set_note(self, ref: str, commit: str, text: str) -> None:
        if commit not in self.commits:
            raise ObjectStoreError("set_note", commit, KeyError("unknown commit"))
        self.notes.setdefault(ref, {})[commit] = text.strip()
        # The notes ref moves whenever any note under it changes
        listing = "".join(f"{c} {t}\n" for c, t in sorted(self.notes[ref].items()))
        self.refs[ref] = git_object_id("tree", listing.encode())

    def list_noted_commits(self, ref: str) -> list[str]:
        return list(self.notes.get(ref, {}))

    # Remotes

    def remote_ref(self, remote: str, ref: str) -> str | None:
        return self.remotes.get((remote, ref))

    def push_ref(self, remote: str, ref: str, force: bool = False) -> None:
        local = self.refs.get(ref)
        if local is None:
            raise ObjectStoreError("push_ref", ref, KeyError("ref does not exist"))
        self.remotes[(remote, ref)] = local
        logger.debug("Pushed %s to %s (force=%s)", ref, remote, force)

