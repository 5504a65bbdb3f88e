"""
Claude Code session discovery.

Claude Code writes one JSONL file per session under
``~/.claude/projects/<encoded-cwd>/<session-id>.jsonl``. The directory name
encodes the working directory lossily, so sessions are matched to a
repository by the ``cwd`` recorded in the file itself rather than by the
directory name.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from ..exceptions import ObjectStoreError
from ..file_ops import iter_lines
from ..records import count_user_messages, iter_records, record_timestamp, session_bounds
from .base import LocalSession, SessionDiscoverer, is_within

logger = logging.getLogger(__name__)

TOOL_NAME = "claude-code"
SESSION_EXTENSION = ".jsonl"
WRITE_TOOLS = frozenset({"Write", "Edit"})


def default_projects_dir() -> Path:
    return Path.home() / ".claude" / "projects"


class ClaudeCodeDiscoverer(SessionDiscoverer):
    """Discovers Claude Code sessions.

    Args:
        projects_dir: Claude Code projects directory (default: ~/.claude/projects)
    """

    tool = TOOL_NAME

    def __init__(self, projects_dir: Path | None = None):
        self.projects_dir = projects_dir or default_projects_dir()

    def session_files(self) -> list[Path]:
        if not self.projects_dir.is_dir():
            logger.debug("No Claude Code projects directory at %s", self.projects_dir)
            return []
        return sorted(self.projects_dir.glob(f"*/*{SESSION_EXTENSION}"))

    def find_local(self, session_id: str) -> Path | None:
        for path in self.session_files():
            if path.stem == session_id:
                return path
        return None

    def discover(self, repo_root: Path, start: datetime, end: datetime) -> list[LocalSession]:
        repo = os.path.normpath(os.path.abspath(repo_root))
        sessions = []
        skipped_by_mtime = 0

        for path in self.session_files():
            try:
                mtime = datetime.fromtimestamp(path.stat().st_mtime, UTC)
            except OSError:
                continue
            # Files untouched since before the period cannot contain activity in it
            if mtime < start:
                skipped_by_mtime += 1
                continue

            try:
                if not self.belongs_to_repo(path, repo, end):
                    continue
                content = path.read_bytes()
            except (OSError, ObjectStoreError) as e:
                logger.warning("Skipping unreadable session %s: %s", path, e)
                continue

            records = [r for _, r in iter_records(content)]
            created, modified = session_bounds(records)
            if created is None or modified is None:
                continue
            if modified < start or created > end:
                logger.debug("Session %s outside work period", path.stem)
                continue
            if count_user_messages(records, start, end) == 0:
                logger.debug("Session %s has no user messages in work period", path.stem)
                continue

            sessions.append(
                LocalSession(
                    tool=TOOL_NAME,
                    id=path.stem,
                    path=path,
                    created=created,
                    modified=modified,
                    ext=SESSION_EXTENSION,
                )
            )

        logger.debug(
            "Claude Code: %d sessions for %s (%d skipped by mtime)", len(sessions), repo, skipped_by_mtime
        )
        sessions.sort(key=lambda s: s.modified, reverse=True)
        return sessions

    def belongs_to_repo(self, path: Path, repo: str, end: datetime) -> bool:
        """
        Check whether a session was run in ``repo``.

        The first record carrying a ``cwd`` decides: the session belongs to
        the repo when that directory is the repo or inside it. A session
        started in a parent directory belongs to the repo only if it wrote
        files inside it. Sessions that started after ``end`` never belong.
        """
        lines = iter_lines(path)
        try:
            first_cwd = None
            first_stamp = None
            for line in lines:
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict) and isinstance(record.get("cwd"), str) and record["cwd"]:
                    first_cwd = os.path.normpath(record["cwd"])
                    first_stamp = record_timestamp(record)
                    break

            if first_cwd is None:
                return False
            if first_stamp is not None and first_stamp > end:
                return False
            if is_within(first_cwd, repo):
                return True
            if is_within(repo, first_cwd):
                return self._writes_into(lines, repo)
            return False
        finally:
            lines.close()

    def _writes_into(self, lines: Iterator[str], repo: str) -> bool:
        for line in lines:
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            message = record.get("message") if isinstance(record, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, list):
                continue
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "tool_use":
                    continue
                if block.get("name") not in WRITE_TOOLS:
                    continue
                tool_input = block.get("input")
                target = tool_input.get("file_path") if isinstance(tool_input, dict) else None
                if isinstance(target, str) and is_within(os.path.normpath(target), repo):
                    return True
        return False
