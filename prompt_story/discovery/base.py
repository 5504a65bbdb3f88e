"""
Session discovery contract and registry.

Each assistant tool stores its sessions somewhere on the local machine in
its own format. A discoverer knows one tool's layout and returns the
sessions that were active in a repository during a work period.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ..exceptions import ObjectStoreError
from ..records import count_user_actions, iter_records

logger = logging.getLogger(__name__)

AGENT_SESSION_PREFIX = "agent-"


def is_within(path: str, root: str) -> bool:
    """True if normalized ``path`` is ``root`` or lies below it."""
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


@dataclass(frozen=True)
class LocalSession:
    """A session file found on the local machine."""

    tool: str
    id: str
    path: Path
    created: datetime
    modified: datetime
    ext: str = ".jsonl"

    @property
    def is_agent(self) -> bool:
        return self.id.startswith(AGENT_SESSION_PREFIX)

    def read_content(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise ObjectStoreError("read_session", str(self.path), e) from e


class SessionDiscoverer(ABC):
    """Finds one tool's sessions for a repository and work period."""

    tool: str = ""

    @abstractmethod
    def discover(self, repo_root: Path, start: datetime, end: datetime) -> list[LocalSession]:
        """Return sessions that overlap ``[start, end]`` and belong to ``repo_root``."""

    def find_local(self, session_id: str) -> Path | None:
        """Locate the local file of a session, if this tool still has it."""
        return None

    def count_user_actions(self, sessions: list[LocalSession], start: datetime, end: datetime) -> int:
        """Count prompts and other user actions in the work period.

        Sub-agent sessions are skipped: their "user" turns are written by
        the parent agent.
        """
        total = 0
        for session in sessions:
            if session.is_agent:
                continue
            try:
                content = session.read_content()
            except ObjectStoreError as e:
                logger.warning("Cannot count actions in %s: %s", session.path, e)
                continue
            total += count_user_actions((r for _, r in iter_records(content)), start, end)
        return total


_discoverers: dict[str, SessionDiscoverer] = {}


def register_discoverer(discoverer: SessionDiscoverer) -> None:
    """Register (or replace) the discoverer for ``discoverer.tool``."""
    _discoverers[discoverer.tool] = discoverer


def unregister_discoverer(tool: str) -> SessionDiscoverer | None:
    return _discoverers.pop(tool, None)


def get_discoverer(tool: str) -> SessionDiscoverer | None:
    return _discoverers.get(tool)


def get_discoverers() -> list[SessionDiscoverer]:
    return list(_discoverers.values())
