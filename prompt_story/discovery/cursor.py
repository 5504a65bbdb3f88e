"""
Cursor session discovery.

Cursor keeps its chat ("composer") sessions in a SQLite key-value table,
``cursorDiskKV``, inside ``state.vscdb``. Each session is one
``composerData:<id>`` row holding JSON. Newer Cursor versions keep the
messages ("bubbles") in separate ``bubbleId:<id>:<n>`` rows; the stored
transcript is the composer JSON with those bubbles attached under
``_bubbles``.

Composer data records no working directory, so a session is matched to a
repository through the files it touched: the git root above their common
directory must be the repository (or contain it, or lie inside it).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import aiosqlite

from ..exceptions import ObjectStoreError
from .base import LocalSession, SessionDiscoverer, is_within

logger = logging.getLogger(__name__)

TOOL_NAME = "cursor"
SESSION_EXTENSION = ".json"
COMPOSER_KEY_PREFIX = "composerData:"
BUBBLE_KEY_PREFIX = "bubbleId:"
USER_BUBBLE = 1


def default_db_path() -> Path:
    """Platform location of Cursor's global ``state.vscdb``."""
    home = Path.home()
    if sys.platform == "darwin":
        base = home / "Library" / "Application Support"
    elif sys.platform == "win32":
        base = Path(os.environ.get("APPDATA") or home / "AppData" / "Roaming")
    else:
        base = home / ".config"
    return base / "Cursor" / "User" / "globalStorage" / "state.vscdb"


async def _fetch_rows(db_path: Path, query: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
    async with aiosqlite.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True) as conn:
        async with conn.execute(query, params) as cursor:
            return list(await cursor.fetchall())


def query_db(db_path: Path, query: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
    """Run a read-only query against Cursor's database.

    Raises:
        ObjectStoreError: If the database cannot be opened or queried
    """
    try:
        return asyncio.run(_fetch_rows(db_path, query, params))
    except aiosqlite.Error as e:
        raise ObjectStoreError("read_cursor_db", str(db_path), e) from e


def from_millis(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, UTC)


def bubble_time(bubble: dict[str, Any]) -> datetime | None:
    timing = bubble.get("timingInfo")
    return from_millis(timing.get("clientStartTime")) if isinstance(timing, dict) else None


def iter_bubbles(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Bubbles of both layouts: inline ``conversation`` and attached ``_bubbles``."""
    bubbles = []
    for key in ("conversation", "_bubbles"):
        items = data.get(key)
        if isinstance(items, list):
            bubbles.extend(b for b in items if isinstance(b, dict))
    return bubbles


def composer_bounds(data: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """``createdAt`` and the latest of ``lastUpdatedAt`` and bubble times."""
    created = from_millis(data.get("createdAt"))
    modified = from_millis(data.get("lastUpdatedAt"))
    for bubble in iter_bubbles(data):
        stamp = bubble_time(bubble)
        if stamp is not None and (modified is None or stamp > modified):
            modified = stamp
    return created, modified or created


def _uri_path(value: Any) -> str | None:
    uri = value.get("fsPath") if isinstance(value, dict) else None
    return uri if isinstance(uri, str) and uri else None


def touched_paths(data: dict[str, Any]) -> list[str]:
    """File paths a session edited or referenced."""
    paths = []
    states = data.get("originalFileStates")
    if isinstance(states, dict):
        for uri in states:
            if isinstance(uri, str) and uri.startswith("file://"):
                path = unquote(urlparse(uri).path)
                if path:
                    paths.append(path)

    for bubble in iter_bubbles(data):
        for block in bubble.get("codeBlocks") or []:
            path = _uri_path(block.get("uri")) if isinstance(block, dict) else None
            if path:
                paths.append(path)
        checkpoint = bubble.get("checkpoint")
        files = checkpoint.get("files") if isinstance(checkpoint, dict) else None
        for entry in files or []:
            path = _uri_path(entry.get("uri")) if isinstance(entry, dict) else None
            if path:
                paths.append(path)
    return paths


def find_git_root(path: str) -> str | None:
    """Walk up from ``path`` to the nearest directory holding ``.git``."""
    current = Path(path)
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return str(candidate)
    return None


def workspace_root(paths: list[str]) -> str | None:
    """Git root above the common directory of ``paths``."""
    if not paths:
        return None
    try:
        common = os.path.commonpath([os.path.dirname(os.path.normpath(p)) for p in paths])
    except ValueError:
        # Mixed drives or mixed absolute and relative paths
        return None
    return find_git_root(common) if common else None


def count_user_bubbles(data: dict[str, Any], start: datetime, end: datetime) -> int:
    """User bubbles with text; undated ones always count."""
    count = 0
    for bubble in iter_bubbles(data):
        if bubble.get("type") != USER_BUBBLE or not bubble.get("text"):
            continue
        stamp = bubble_time(bubble)
        if stamp is not None and not start <= stamp <= end:
            continue
        count += 1
    return count


@dataclass(frozen=True)
class CursorSession(LocalSession):
    """A Cursor session; ``path`` is the database and ``key`` its row."""

    ext: str = SESSION_EXTENSION
    key: str = ""

    def read_content(self) -> bytes:
        rows = query_db(self.path, "SELECT value FROM cursorDiskKV WHERE key = ?", (self.key,))
        if not rows:
            raise ObjectStoreError("read_session", f"{self.path}:{self.key}", LookupError("row not found"))
        raw = rows[0][0]
        raw = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Cursor session %s is not JSON; storing it as-is", self.id)
            return raw
        if not isinstance(data, dict):
            return raw

        bubbles = []
        bubble_rows = query_db(
            self.path,
            "SELECT value FROM cursorDiskKV WHERE key LIKE ? ORDER BY rowid",
            (f"{BUBBLE_KEY_PREFIX}{self.id}:%",),
        )
        for (value,) in bubble_rows:
            try:
                bubble = json.loads(value)
            except (TypeError, ValueError):
                continue
            if isinstance(bubble, dict):
                bubbles.append(bubble)
        if bubbles:
            data["_bubbles"] = bubbles
        return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class CursorDiscoverer(SessionDiscoverer):
    """Discovers Cursor composer sessions.

    Args:
        db_path: Cursor's ``state.vscdb`` (default: platform location)
    """

    tool = TOOL_NAME

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or default_db_path()

    def discover(self, repo_root: Path, start: datetime, end: datetime) -> list[LocalSession]:
        if not self.db_path.is_file():
            logger.debug("No Cursor database at %s", self.db_path)
            return []

        repo = os.path.normpath(os.path.abspath(repo_root))
        rows = query_db(
            self.db_path,
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ?",
            (f"{COMPOSER_KEY_PREFIX}%",),
        )

        sessions: list[LocalSession] = []
        for key, value in rows:
            try:
                data = json.loads(value)
            except (TypeError, ValueError):
                logger.debug("Skipping unparseable Cursor row %s", key)
                continue
            if not isinstance(data, dict):
                continue

            created, modified = composer_bounds(data)
            if created is None or modified is None:
                continue
            if modified < start or created > end:
                continue

            workspace = workspace_root(touched_paths(data))
            if workspace is None:
                continue
            workspace = os.path.normpath(workspace)
            if not (is_within(workspace, repo) or is_within(repo, workspace)):
                continue

            session_id = data.get("composerId") or key[len(COMPOSER_KEY_PREFIX):]
            sessions.append(
                CursorSession(
                    tool=TOOL_NAME,
                    id=session_id,
                    path=self.db_path,
                    created=created,
                    modified=modified,
                    key=key,
                )
            )

        logger.debug("Cursor: %d sessions for %s", len(sessions), repo)
        sessions.sort(key=lambda s: s.modified, reverse=True)
        return sessions

    def count_user_actions(self, sessions: list[LocalSession], start: datetime, end: datetime) -> int:
        total = 0
        for session in sessions:
            try:
                data = json.loads(session.read_content())
            except (ObjectStoreError, ValueError) as e:
                logger.warning("Cannot count actions in Cursor session %s: %s", session.id, e)
                continue
            if isinstance(data, dict):
                total += count_user_bubbles(data, start, end)
        return total
