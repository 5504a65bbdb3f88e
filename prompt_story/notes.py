"""
Per-commit notes and work periods.

A note is a small JSON manifest attached to a commit with git notes. It
lists the sessions whose transcripts explain the commit and the start of
the work period the sessions were collected for:

    {
      "version": 1,
      "start_work": "2025-01-15T09:00:00Z",
      "sessions": [
        {"tool": "claude-code", "id": "...", "path": "claude-code/<id>.jsonl",
         "created": "...", "modified": "..."}
      ]
    }

Session entries are never deleted from a note. Removing a session marks it
``removed`` so the manifest keeps an honest history.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .exceptions import CommitResolutionError, NoteNotFoundError
from .records import in_period, record_timestamp
from .store import ObjectStore
from .time_utils import format_timestamp, parse_timestamp, utc_now
from .transcripts import transcript_path

if TYPE_CHECKING:
    from .discovery import LocalSession

logger = logging.getLogger(__name__)

NOTES_REF = "refs/notes/prompt-story"
LEGACY_NOTES_REF = "refs/notes/commits"
NOTE_VERSION = 1
SUMMARY_MARKER = "Prompt-Story:"
ROOT_COMMIT_LOOKBACK = timedelta(hours=24)

_TOOL_DISPLAY_NAMES = {
    "claude-code": "Claude Code",
    "claude-cloud": "Claude Cloud",
    "cursor": "Cursor",
    "codex": "Codex",
}


def _required_time(data: dict[str, Any], key: str) -> datetime:
    value = parse_timestamp(data.get(key))
    if value is None:
        raise ValueError(f"missing or invalid {key!r}")
    return value


@dataclass
class SessionEntry:
    """A session referenced by a note."""

    tool: str
    id: str
    path: str
    created: datetime
    modified: datetime
    removed: bool = False
    removed_at: datetime | None = None

    @classmethod
    def from_session(cls, session: LocalSession) -> SessionEntry:
        return cls(
            tool=session.tool,
            id=session.id,
            path=transcript_path(session.tool, session.id, session.ext),
            created=session.created,
            modified=session.modified,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool": self.tool,
            "id": self.id,
            "path": self.path,
            "created": format_timestamp(self.created),
            "modified": format_timestamp(self.modified),
        }
        if self.removed:
            data["removed"] = True
            if self.removed_at is not None:
                data["removed_at"] = format_timestamp(self.removed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionEntry:
        if not isinstance(data, dict):
            raise ValueError("session entry must be an object")
        for key in ("tool", "id"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise ValueError(f"session entry missing {key!r}")
        return cls(
            tool=data["tool"],
            id=data["id"],
            path=data.get("path") or transcript_path(data["tool"], data["id"]),
            created=_required_time(data, "created"),
            modified=_required_time(data, "modified"),
            removed=bool(data.get("removed", False)),
            removed_at=parse_timestamp(data.get("removed_at")),
        )


@dataclass
class Note:
    """The manifest attached to one commit."""

    start_work: datetime
    sessions: list[SessionEntry] = field(default_factory=list)
    version: int = NOTE_VERSION

    def active_sessions(self) -> list[SessionEntry]:
        return [s for s in self.sessions if not s.removed]

    def session(self, session_id: str) -> SessionEntry | None:
        for entry in self.sessions:
            if entry.id == session_id:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "start_work": format_timestamp(self.start_work),
            "sessions": [s.to_dict() for s in self.sessions],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def summary_line(self, prompt_count: int, label: str | None = None) -> str:
        """One-line commit message trailer, e.g. ``Prompt-Story: Used Claude Code (3 user prompts)``."""
        suffix = f" [{label}]" if label else ""
        active = self.active_sessions()
        if not active:
            return f"{SUMMARY_MARKER} none{suffix}"
        tools = sorted({_TOOL_DISPLAY_NAMES.get(s.tool, s.tool) for s in active})
        return f"{SUMMARY_MARKER} Used {', '.join(tools)} ({prompt_count} user prompts){suffix}"


def build_note(start_work: datetime, sessions: Iterable[LocalSession | SessionEntry]) -> Note:
    """Create a version-1 note for the given sessions."""
    entries = [s if isinstance(s, SessionEntry) else SessionEntry.from_session(s) for s in sessions]
    return Note(start_work=start_work, sessions=entries, version=NOTE_VERSION)


def parse_note(text: str) -> Note:
    """
    Parse note JSON.

    Accepts the current ``version`` key and the older ``v`` key.

    Raises:
        ValueError: If the text is not a valid note
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("note must be a JSON object")
    version = data.get("version", data.get("v", NOTE_VERSION))
    if not isinstance(version, int):
        raise ValueError("note version must be an integer")
    sessions = data.get("sessions") or []
    if not isinstance(sessions, list):
        raise ValueError("note sessions must be a list")
    return Note(
        start_work=_required_time(data, "start_work"),
        sessions=[SessionEntry.from_dict(s) for s in sessions],
        version=version,
    )


def merge_notes(notes: Iterable[Note]) -> Note | None:
    """
    Combine notes, e.g. when commits are squashed.

    The earliest start and the highest version win. Sessions are
    de-duplicated by id (first occurrence wins) and sorted by creation time.
    """
    notes = list(notes)
    if not notes:
        return None
    if len(notes) == 1:
        return notes[0]

    seen: set[str] = set()
    sessions: list[SessionEntry] = []
    for note in notes:
        for entry in note.sessions:
            if entry.id not in seen:
                seen.add(entry.id)
                sessions.append(entry)
    sessions.sort(key=lambda s: s.created)

    return Note(
        start_work=min(n.start_work for n in notes),
        sessions=sessions,
        version=max(n.version for n in notes),
    )


@dataclass
class SessionCommitInfo:
    """A session and the commits whose notes reference it."""

    session_id: str
    tool: str
    path: str
    created: datetime
    modified: datetime
    removed: bool
    commits: list[str] = field(default_factory=list)


class NoteStore:
    """Reads and writes notes through the object store's note primitive.

    Notes are written to ``ref``. Reads fall back to ``legacy_ref`` for
    commits annotated by older versions.
    """

    def __init__(
        self,
        store: ObjectStore,
        ref: str = NOTES_REF,
        legacy_ref: str | None = LEGACY_NOTES_REF,
    ):
        self.store = store
        self.ref = ref
        self.legacy_ref = legacy_ref

    def _raw(self, commit: str) -> str | None:
        text = self.store.get_note(self.ref, commit)
        if text is None and self.legacy_ref:
            text = self.store.get_note(self.legacy_ref, commit)
        return text

    def exists(self, commit: str) -> bool:
        """True if the commit has a note on ``ref`` or a parseable legacy note.

        The legacy ref is git's default notes ref, so plain notes left there
        by other tools do not count.
        """
        if self.store.get_note(self.ref, commit) is not None:
            return True
        if not self.legacy_ref:
            return False
        text = self.store.get_note(self.legacy_ref, commit)
        if text is None:
            return False
        try:
            parse_note(text)
        except ValueError:
            return False
        return True

    def get(self, commit: str) -> Note | None:
        """Return the commit's note, or None if it has none or it is malformed."""
        text = self._raw(commit)
        if text is None:
            return None
        try:
            return parse_note(text)
        except ValueError as e:
            logger.warning("Ignoring malformed note on %s: %s", commit[:7], e)
            return None

    def require(self, commit: str) -> Note:
        note = self.get(commit)
        if note is None:
            raise NoteNotFoundError(commit)
        return note

    def put(self, commit: str, note: Note) -> None:
        self.store.set_note(self.ref, commit, note.to_json())
        logger.debug("Wrote note on %s (%d sessions)", commit[:7], len(note.sessions))

    def mark_session_removed(self, commit: str, session_id: str, when: datetime | None = None) -> bool:
        """Flag a session as removed in one commit's note.

        Returns False when the commit has no note or the note does not list
        the session.
        """
        note = self.get(commit)
        if note is None:
            return False
        entry = note.session(session_id)
        if entry is None:
            return False
        marked = replace(entry, removed=True, removed_at=when or utc_now())
        note.sessions = [marked if s is entry else s for s in note.sessions]
        self.put(commit, note)
        return True

    def find_sessions_in_commits(self, commits: Iterable[str]) -> dict[str, SessionCommitInfo]:
        """Map session id to the listed commits whose notes reference it."""
        sessions: dict[str, SessionCommitInfo] = {}
        for commit in commits:
            note = self.get(commit)
            if note is None:
                continue
            for entry in note.sessions:
                info = sessions.get(entry.id)
                if info is None:
                    sessions[entry.id] = SessionCommitInfo(
                        session_id=entry.id,
                        tool=entry.tool,
                        path=entry.path,
                        created=entry.created,
                        modified=entry.modified,
                        removed=entry.removed,
                        commits=[commit],
                    )
                else:
                    info.commits.append(commit)
        return sessions

    def noted_commits(self) -> list[str]:
        commits = list(self.store.list_noted_commits(self.ref))
        if self.legacy_ref:
            commits.extend(self.store.list_noted_commits(self.legacy_ref))
        return list(dict.fromkeys(commits))

    def find_commits_with_session(self, session_id: str) -> list[str]:
        """Every noted commit whose note references ``session_id``."""
        result = []
        for commit in self.noted_commits():
            note = self.get(commit)
            if note is not None and note.session(session_id) is not None:
                result.append(commit)
        return result


def work_period(store: ObjectStore, commit: str, note: Note) -> tuple[datetime, datetime]:
    """
    Return the (start, end) work period a note covers.

    ``end`` is the commit's timestamp. When the store cannot provide one,
    the latest ``modified`` among the note's sessions is used instead, and
    with no sessions at all the period collapses to ``start``.
    """
    start = note.start_work
    end = store.commit_timestamp(commit)
    if end is not None:
        return start, end

    latest: datetime | None = None
    for entry in note.sessions:
        if latest is None or entry.modified > latest:
            latest = entry.modified
    return start, latest if latest is not None else start


def derive_work_period(store: ObjectStore, commit: str) -> tuple[datetime, datetime]:
    """
    Recompute a work period for a commit that has no note.

    ``end`` is the commit's timestamp and ``start`` its parent's. Root
    commits (or parents without a timestamp) look back 24 hours.

    Raises:
        CommitResolutionError: If the commit has no timestamp
    """
    end = store.commit_timestamp(commit)
    if end is None:
        raise CommitResolutionError(commit, "no commit timestamp")
    parent = store.parent_commit(commit)
    start = store.commit_timestamp(parent) if parent else None
    if start is None:
        start = end - ROOT_COMMIT_LOOKBACK
    return start, end


def records_in_period(
    records: Iterable[dict[str, Any]], start: datetime, end: datetime
) -> list[dict[str, Any]]:
    """Records whose timestamp lies in ``[start, end]``.

    Only used for display; the stored transcript always keeps every record.
    """
    return [r for r in records if in_period(record_timestamp(r), start, end)]
