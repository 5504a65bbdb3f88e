"""
Lifecycle operations: Add, Repair, Remove, Redact, Ban and Unban.

Each operation composes discovery, scrubbing, the transcript tree and the
note store into one user-facing step and reports what happened as an
``Outcome``. Policy decisions (a note already exists, no sessions were
found) are ``SKIPPED`` outcomes, not exceptions, so batch runs can tally
them apart from real failures.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .banned import BanList
from .config import PromptStoryConfig
from .discovery import (
    ClaudeCodeDiscoverer,
    CursorDiscoverer,
    LocalSession,
    SessionDiscoverer,
    count_all_user_actions,
    find_sessions,
    get_discoverers,
)
from .exceptions import (
    ConfigError,
    ObjectStoreError,
    PromptStoryError,
    RecordNotFoundError,
    TranscriptNotFoundError,
)
from .file_ops import write_bytes_atomic
from .logging_utils import CommitLoggerAdapter
from .notes import SUMMARY_MARKER, NoteStore, SessionCommitInfo, build_note, derive_work_period
from .redaction import RedactionTarget, redact_content
from .scrub import Scrubber, build_scrubber
from .store import ObjectStore
from .transcripts import TranscriptChange, TranscriptTree

logger = logging.getLogger(__name__)

DEFAULT_SCAN_RANGE = "HEAD~20..HEAD"


class OutcomeStatus(Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Result of one lifecycle operation on one commit or session."""

    status: OutcomeStatus
    commit: str | None
    reason: str = ""
    sessions: tuple[str, ...] = ()
    dry_run: bool = False
    error: Exception | None = None
    summary: str = ""

    @classmethod
    def applied(
        cls,
        commit: str | None,
        reason: str = "",
        sessions: Iterable[str] = (),
        dry_run: bool = False,
        summary: str = "",
    ) -> Outcome:
        return cls(OutcomeStatus.APPLIED, commit, reason, tuple(sessions), dry_run, summary=summary)

    @classmethod
    def skipped(cls, commit: str | None, reason: str, sessions: Iterable[str] = ()) -> Outcome:
        return cls(OutcomeStatus.SKIPPED, commit, reason, tuple(sessions))

    @classmethod
    def failed(cls, commit: str | None, error: Exception) -> Outcome:
        return cls(OutcomeStatus.FAILED, commit, str(error), error=error)

    @property
    def is_applied(self) -> bool:
        return self.status is OutcomeStatus.APPLIED

    @property
    def is_skipped(self) -> bool:
        return self.status is OutcomeStatus.SKIPPED

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "commit": self.commit,
            "reason": self.reason,
            "sessions": list(self.sessions),
            "dry_run": self.dry_run,
        }


@dataclass
class BatchReport:
    """Outcomes of a batch run with per-status tallies."""

    outcomes: list[Outcome] = field(default_factory=list)

    def add(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def applied(self) -> int:
        return self._count(OutcomeStatus.APPLIED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return f"{self.applied} applied, {self.skipped} skipped, {self.failed} failed"


def run_batch(commits: Iterable[str], operation: Callable[[str], Outcome]) -> BatchReport:
    """
    Run ``operation`` for each commit, continuing past failures.

    Errors raised for one commit become a ``FAILED`` outcome for that
    commit; the remaining commits still run.
    """
    report = BatchReport()
    for commit in commits:
        try:
            outcome = operation(commit)
        except (PromptStoryError, OSError) as e:
            logger.error("%s: %s", commit[:7], e)
            outcome = Outcome.failed(commit, e)
        report.add(outcome)
    logger.info("Batch finished: %s", report.summary())
    return report


def _dedupe(sessions: Iterable[LocalSession]) -> list[LocalSession]:
    seen: set[tuple[str, str]] = set()
    unique = []
    for session in sessions:
        key = (session.tool, session.id)
        if key not in seen:
            seen.add(key)
            unique.append(session)
    return unique


class PromptStory:
    """
    Lifecycle engine bound to one object store.

    Args:
        store: Object store holding commits, notes and transcripts
        config: Settings (default: built-in defaults)
        repo_root: Working tree root used to match local sessions
        discoverers: Session discoverers (default: all registered, with
            locations from config)
        scrubber: Transcript scrubber (default: built from config)
    """

    def __init__(
        self,
        store: ObjectStore,
        config: PromptStoryConfig | None = None,
        repo_root: Path | None = None,
        discoverers: list[SessionDiscoverer] | None = None,
        scrubber: Scrubber | None = None,
    ):
        self.store = store
        self.config = config or PromptStoryConfig()
        self.repo_root = repo_root or Path.cwd()
        self.notes = NoteStore(store, self.config.notes_ref, self.config.legacy_notes_ref)
        self.transcripts = TranscriptTree(store, self.config.transcripts_ref)
        self.ban_list = BanList(self.config.ban_list_path) if self.config.ban_list_path else None

        if discoverers is not None:
            self.discoverers = discoverers
        else:
            # Configured locations replace the registered defaults for their tool
            configured: dict[str, SessionDiscoverer] = {}
            if self.config.claude_projects_dir is not None:
                configured[ClaudeCodeDiscoverer.tool] = ClaudeCodeDiscoverer(self.config.claude_projects_dir)
            if self.config.cursor_db_path is not None:
                configured[CursorDiscoverer.tool] = CursorDiscoverer(self.config.cursor_db_path)
            self.discoverers = [configured.pop(d.tool, d) for d in get_discoverers()]
            self.discoverers.extend(configured.values())

        self._scrubber = scrubber

    @property
    def scrubber(self) -> Scrubber:
        if self._scrubber is None:
            self._scrubber = build_scrubber(
                enabled=self.config.scrub_enabled,
                custom_patterns_file=self.config.custom_patterns_file,
                redact_tools=self.config.redact_tool_outputs,
            )
        return self._scrubber

    def _banned_ids(self) -> frozenset[str]:
        return self.ban_list.ids() if self.ban_list else frozenset()

    def require_ban_list(self) -> BanList:
        if self.ban_list is None:
            raise ConfigError("ban_list_path", "no ban list location configured")
        return self.ban_list

    def discover(self, start: datetime, end: datetime) -> list[LocalSession]:
        return find_sessions(
            self.repo_root, start, end, banned=self._banned_ids(), discoverers=self.discoverers
        )

    # Add / Repair

    def add(
        self,
        commit: str,
        sessions: Iterable[LocalSession] | None = None,
        force: bool = False,
        dry_run: bool = False,
        start_work: datetime | None = None,
    ) -> Outcome:
        """
        Attach transcripts and a note to a commit.

        Sessions are discovered for the commit's work period unless given.

        Raises:
            CommitResolutionError: If ``commit`` cannot be resolved
            ObjectStoreError: If reading a session or writing the store fails
        """
        sha = self.store.resolve_commit(commit)
        log = CommitLoggerAdapter(logger, {"commit": sha})

        if self.notes.exists(sha) and not force:
            log.info("Note already exists; use force to overwrite")
            return Outcome.skipped(sha, "note already exists")

        start, end = derive_work_period(self.store, sha)
        if start_work is not None:
            start = start_work

        if sessions is None:
            found = self.discover(start, end)
        else:
            banned = self._banned_ids()
            found = [s for s in sessions if s.id not in banned]
        found = _dedupe(found)
        if not found:
            log.info("No sessions found for work period")
            return Outcome.skipped(sha, "no sessions found")
        return self._write(sha, found, start, end, dry_run, log)

    def repair(self, commit: str, force: bool = False, dry_run: bool = False) -> Outcome:
        """
        Recreate a missing note from local sessions.

        The work period is recomputed from the commit graph, since no note
        is left to say where it started.
        """
        sha = self.store.resolve_commit(commit)
        log = CommitLoggerAdapter(logger, {"commit": sha})

        if self.notes.exists(sha) and not force:
            return Outcome.skipped(sha, "note already exists")

        start, end = derive_work_period(self.store, sha)
        found = _dedupe(self.discover(start, end))
        if not found:
            log.info("No local sessions left to repair from")
            return Outcome.skipped(sha, "no sessions found")
        return self._write(sha, found, start, end, dry_run, log)

    def _write(
        self,
        sha: str,
        sessions: list[LocalSession],
        start: datetime,
        end: datetime,
        dry_run: bool,
        log: logging.LoggerAdapter,
    ) -> Outcome:
        ids = [s.id for s in sessions]
        note = build_note(start, sessions)
        prompts = count_all_user_actions(sessions, start, end, self.discoverers)
        summary = note.summary_line(prompts)

        if dry_run:
            log.info("Dry run: would attach %d sessions", len(sessions))
            return Outcome.applied(sha, "dry run", ids, dry_run=True, summary=summary)

        changes = []
        for session in sessions:
            scrubbed = self.scrubber.scrub(session.read_content())
            blob_id = self.store.hash_blob(scrubbed)
            changes.append(TranscriptChange(session.tool, f"{session.id}{session.ext}", blob_id))
        self.transcripts.apply(changes)
        self.notes.put(sha, note)

        log.info("Attached note with %d sessions (%d user prompts)", len(sessions), prompts)
        return Outcome.applied(sha, f"attached {len(sessions)} sessions", ids, summary=summary)

    def scan_commits_needing_notes(self, range_spec: str | None = None) -> list[str]:
        """Commits whose message carries the summary marker but that have no note."""
        if range_spec:
            commits = self.store.resolve_commits(range_spec)
        else:
            try:
                commits = self.store.list_commits(DEFAULT_SCAN_RANGE)
            except PromptStoryError:
                commits = self.store.list_commits("HEAD")

        needing = []
        for sha in commits:
            try:
                message = self.store.commit_message(sha)
            except PromptStoryError as e:
                logger.warning("Cannot read message of %s: %s", sha[:7], e)
                continue
            if SUMMARY_MARKER in message and not self.notes.exists(sha):
                needing.append(sha)
        return needing

    # Remove

    def sessions_in(self, commit_spec: str) -> dict[str, SessionCommitInfo]:
        """Sessions referenced by the notes of the commits in ``commit_spec``."""
        return self.notes.find_sessions_in_commits(self.store.resolve_commits(commit_spec))

    def remove(
        self,
        commit_spec: str,
        session_ids: Iterable[str] | None = None,
        ban: bool | Collection[str] = False,
        push: bool = False,
    ) -> list[Outcome]:
        """
        Remove sessions referenced by the given commits.

        Each session is marked removed in every listed commit's note and its
        transcript is deleted from the tree. Sessions already marked removed
        are marked again, which changes nothing else.

        Args:
            commit_spec: Commit or ``A..B`` range
            session_ids: Sessions to remove (default: every referenced session)
            ban: Also ban the sessions from future captures; True bans all
                of them, a collection of ids bans only those
            push: Force-push both refs to the remote when it has them
        """
        infos = self.sessions_in(commit_spec)
        wanted = list(infos) if session_ids is None else list(dict.fromkeys(session_ids))

        outcomes = []
        for session_id in wanted:
            info = infos.get(session_id)
            if info is None:
                outcomes.append(
                    Outcome.skipped(None, "not referenced by the listed commits", [session_id])
                )
                continue
            banned = ban if isinstance(ban, bool) else session_id in ban
            outcomes.append(self.remove_session(info, ban=banned))

        if push and any(o.is_applied for o in outcomes):
            self.push_refs()
        return outcomes

    def remove_session(self, info: SessionCommitInfo, ban: bool = False) -> Outcome:
        marked = [sha for sha in info.commits if self.notes.mark_session_removed(sha, info.session_id)]
        deleted = self.transcripts.remove_transcript(info.tool, info.session_id)
        if ban:
            self.require_ban_list().ban(info.session_id, info.tool, reason="removed")

        reason = f"marked removed in {len(marked)} commit(s)"
        if deleted:
            reason += ", transcript deleted"
        logger.info("Removed session %s/%s: %s", info.tool, info.session_id, reason)
        return Outcome.applied(info.commits[0] if info.commits else None, reason, [info.session_id])

    def refs_on_remote(self) -> list[str]:
        """Refs (notes, transcripts) the configured remote already has."""
        refs = (self.config.notes_ref, self.config.transcripts_ref)
        return [ref for ref in refs if self.store.remote_ref(self.config.remote, ref) is not None]

    def push_refs(self) -> list[str]:
        """Force-push the refs the remote already has. Returns the refs pushed."""
        pushed = []
        for ref in self.refs_on_remote():
            try:
                self.store.push_ref(self.config.remote, ref, force=True)
            except ObjectStoreError as e:
                logger.warning("Failed to push %s to %s: %s", ref, self.config.remote, e)
                continue
            pushed.append(ref)
            logger.info("Force-pushed %s to %s", ref, self.config.remote)
        return pushed

    # Redact

    def redact(self, target: RedactionTarget | str, update_local: bool = True) -> Outcome:
        """
        Replace one transcript record's content with a placeholder.

        Raises:
            ValueError: If ``target`` is not ``<tool>/<session>@<timestamp>``
            TranscriptNotFoundError: If the session has no stored transcript
            RecordNotFoundError: If no record is near the timestamp (nothing is written)
        """
        if isinstance(target, str):
            target = RedactionTarget.parse(target)

        path = self.transcripts.find_transcript(target.tool, target.session_id)
        if path is None:
            raise TranscriptNotFoundError(target.tool, target.session_id)

        content = self.transcripts.read_transcript(path)
        redacted = redact_content(content, target.timestamp, self.config.redact_tolerance, path)
        self.transcripts.replace_transcript(path, redacted)
        logger.info("Redacted %s", target)

        if update_local:
            self._redact_local_copy(target)
        return Outcome.applied(None, f"redacted record in {path}", [target.session_id])

    def _redact_local_copy(self, target: RedactionTarget) -> None:
        for discoverer in self.discoverers:
            if discoverer.tool != target.tool:
                continue
            local = discoverer.find_local(target.session_id)
            if local is None:
                continue
            try:
                content = local.read_bytes()
                write_bytes_atomic(
                    local,
                    redact_content(content, target.timestamp, self.config.redact_tolerance, str(local)),
                    suffix=local.suffix,
                )
            except (OSError, ObjectStoreError, RecordNotFoundError) as e:
                logger.warning("Could not update local copy %s: %s", local, e)
            else:
                logger.info("Updated local copy %s", local)

    # Ban / Unban

    def ban(self, session_id: str, tool: str = "", reason: str = "") -> Outcome:
        if self.require_ban_list().ban(session_id, tool, reason):
            return Outcome.applied(None, "banned", [session_id])
        return Outcome.skipped(None, "already banned", [session_id])

    def unban(self, session_id: str) -> Outcome:
        if self.require_ban_list().unban(session_id):
            return Outcome.applied(None, "unbanned", [session_id])
        return Outcome.skipped(None, "not banned", [session_id])
