"""
Local ban list.

Banned sessions are never captured again by discovery. The list is local
to the clone (it lives inside the git directory and is not versioned):

    <git-dir>/prompt-story/banned.json
    {"banned": [{"id": "...", "tool": "claude-code",
                 "banned_at": "2025-01-15T09:00:00Z", "reason": "..."}]}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .exceptions import ObjectStoreError
from .file_ops import read_json, write_json_atomic
from .time_utils import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

BAN_LIST_FILENAME = "banned.json"


def default_ban_list_path(git_dir: Path) -> Path:
    return git_dir / "prompt-story" / BAN_LIST_FILENAME


@dataclass(frozen=True)
class BannedSession:
    id: str
    tool: str
    banned_at: datetime
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"id": self.id, "tool": self.tool, "banned_at": format_timestamp(self.banned_at)}
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BannedSession:
        return cls(
            id=str(data["id"]),
            tool=str(data.get("tool") or ""),
            banned_at=parse_timestamp(data.get("banned_at")) or utc_now(),
            reason=str(data.get("reason") or ""),
        )


class BanList:
    """The ban list file. Every mutation is a load, change, atomic save."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> list[BannedSession]:
        """Read the list; a missing file is an empty list.

        Raises:
            ObjectStoreError: If the file exists but cannot be read or parsed
        """
        data = read_json(self.path)
        if data is None:
            return []
        if not isinstance(data, dict):
            raise ObjectStoreError("read_ban_list", str(self.path), ValueError("expected a JSON object"))
        banned = data.get("banned") or []
        if not isinstance(banned, list):
            raise ObjectStoreError("read_ban_list", str(self.path), ValueError("'banned' must be a list"))
        entries = []
        for item in banned:
            if isinstance(item, dict) and item.get("id"):
                entries.append(BannedSession.from_dict(item))
            else:
                logger.warning("Ignoring malformed ban list entry in %s: %r", self.path, item)
        return entries

    def save(self, entries: list[BannedSession]) -> None:
        write_json_atomic(self.path, {"banned": [e.to_dict() for e in entries]})

    def ids(self) -> frozenset[str]:
        return frozenset(e.id for e in self.load())

    def is_banned(self, session_id: str) -> bool:
        return session_id in self.ids()

    def ban(self, session_id: str, tool: str, reason: str = "") -> bool:
        """Ban a session. Returns False if it was already banned."""
        entries = self.load()
        if any(e.id == session_id for e in entries):
            return False
        entries.append(BannedSession(id=session_id, tool=tool, banned_at=utc_now(), reason=reason))
        self.save(entries)
        logger.info("Banned session %s/%s", tool, session_id)
        return True

    def unban(self, session_id: str) -> bool:
        """Unban a session. Returns False if it was not banned."""
        entries = self.load()
        remaining = [e for e in entries if e.id != session_id]
        if len(remaining) == len(entries):
            return False
        self.save(remaining)
        logger.info("Unbanned session %s", session_id)
        return True
