"""
Transcript tree manager.

Transcripts live in a tree under their own ref, one subtree per tool:

    refs/notes/prompt-story-transcripts
        claude-code/
            <session-id>.jsonl
        cursor/
            ...

Every write rebuilds only the subtrees it touches. Entries of other tools
and any other top-level entries are passed through by value, and the ref is
moved with a single compare-and-set against the root read at the start.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .exceptions import ObjectStoreError, TranscriptNotFoundError
from .store import ObjectStore, TreeEntry

logger = logging.getLogger(__name__)

TRANSCRIPTS_REF = "refs/notes/prompt-story-transcripts"
DEFAULT_EXTENSION = ".jsonl"


def transcript_path(tool: str, session_id: str, ext: str = DEFAULT_EXTENSION) -> str:
    """Ref-relative path of a transcript: ``<tool>/<session_id><ext>``."""
    return f"{tool}/{session_id}{ext}"


def split_path(path: str) -> tuple[str, str]:
    """Split a transcript path into (tool, entry name)."""
    tool, sep, name = path.strip("/").partition("/")
    if not sep or not tool or not name or "/" in name:
        raise ValueError(f"Not a transcript path: {path!r}")
    return tool, name


@dataclass(frozen=True)
class TranscriptChange:
    """One entry to write into a tool subtree; ``blob_id`` None deletes it."""

    tool: str
    name: str
    blob_id: str | None


class TranscriptTree:
    """Reads and rewrites the transcript tree behind ``ref``."""

    def __init__(self, store: ObjectStore, ref: str = TRANSCRIPTS_REF):
        self.store = store
        self.ref = ref

    def _read_root(self) -> tuple[str | None, list[TreeEntry]]:
        root_id = self.store.get_ref(self.ref)
        entries = self.store.read_tree(root_id) if root_id else []
        return root_id, entries

    def _tool_entries(self, root_entries: list[TreeEntry], tool: str) -> list[TreeEntry]:
        for entry in root_entries:
            if entry.name == tool:
                if not entry.is_tree:
                    raise ObjectStoreError(
                        "read_tree", f"{self.ref}:{tool}", ValueError("expected a tool subtree")
                    )
                return self.store.read_tree(entry.oid)
        return []

    def apply(self, changes: Iterable[TranscriptChange]) -> str | None:
        """
        Write a batch of entry changes with one ref update.

        All reads happen before anything is written, so a failed read leaves
        the ref untouched. Returns the new root tree id (the current one if
        nothing changed, None if the tree does not exist and stays empty).

        Raises:
            ObjectStoreError: If a read or write fails
            RefUpdateConflictError: If the ref moved since it was read
        """
        by_tool: dict[str, list[TranscriptChange]] = {}
        for change in changes:
            by_tool.setdefault(change.tool, []).append(change)

        root_id, root_entries = self._read_root()
        current = {tool: self._tool_entries(root_entries, tool) for tool in by_tool}

        rebuilt: dict[str, list[TreeEntry]] = {}
        for tool, tool_changes in by_tool.items():
            entries = current[tool]
            for change in tool_changes:
                if change.blob_id is None and all(e.name != change.name for e in entries):
                    continue
                entries = [e for e in entries if e.name != change.name]
                if change.blob_id is not None:
                    entries.append(TreeEntry.blob(change.name, change.blob_id))
                rebuilt[tool] = entries

        if not rebuilt:
            return root_id

        new_root = [e for e in root_entries if e.name not in rebuilt]
        for tool, entries in rebuilt.items():
            if entries:
                new_root.append(TreeEntry.tree(tool, self.store.create_tree(entries)))
            else:
                logger.debug("Tool subtree %s is now empty; dropping it", tool)
        new_root_id = self.store.create_tree(new_root)

        if new_root_id != root_id:
            self.store.update_ref(self.ref, new_root_id, expected=root_id)
            logger.debug("Transcript tree %s -> %s", (root_id or "(none)")[:12], new_root_id[:12])
        return new_root_id

    def upsert_blob(self, tool: str, session_id: str, ext: str, blob_id: str | None) -> str | None:
        """Point ``<tool>/<session_id><ext>`` at ``blob_id``, or delete it when None."""
        return self.apply([TranscriptChange(tool, f"{session_id}{ext}", blob_id)])

    def store_transcript(self, tool: str, session_id: str, ext: str, content: bytes) -> str:
        """Hash ``content`` into a blob, link it into the tree and return the blob id."""
        blob_id = self.store.hash_blob(content)
        self.upsert_blob(tool, session_id, ext, blob_id)
        return blob_id

    def read_transcript(self, path: str) -> bytes:
        """
        Read a transcript by its ref-relative path.

        Raises:
            TranscriptNotFoundError: If there is no blob at ``path``
        """
        content = self.store.get_blob(self.ref, path)
        if content is None:
            tool, name = split_path(path)
            raise TranscriptNotFoundError(tool, name)
        return content

    def find_transcript(self, tool: str, session_id: str) -> str | None:
        """Return the path of ``session_id``'s transcript whatever its extension."""
        _, root_entries = self._read_root()
        for entry in self._tool_entries(root_entries, tool):
            if entry.name == session_id or entry.name.startswith(f"{session_id}."):
                return f"{tool}/{entry.name}"
        return None

    def remove_transcript(self, tool: str, session_id: str) -> bool:
        """Delete a session's transcript. Returns False if it was not there."""
        path = self.find_transcript(tool, session_id)
        if path is None:
            return False
        _, name = split_path(path)
        self.apply([TranscriptChange(tool, name, None)])
        logger.info("Removed transcript %s", path)
        return True

    def replace_transcript(self, path: str, content: bytes) -> str:
        """Overwrite the transcript at ``path`` and return the new blob id."""
        tool, name = split_path(path)
        blob_id = self.store.hash_blob(content)
        self.apply([TranscriptChange(tool, name, blob_id)])
        return blob_id

    def list_transcripts(self) -> list[str]:
        """Return every transcript path in the tree, sorted."""
        _, root_entries = self._read_root()
        paths = []
        for entry in root_entries:
            if not entry.is_tree:
                continue
            paths.extend(f"{entry.name}/{e.name}" for e in self.store.read_tree(entry.oid) if not e.is_tree)
        return sorted(paths)
