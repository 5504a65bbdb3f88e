"""
Local session discovery.

Discoverers register per tool. ``find_sessions`` asks each of them for the
sessions active in a repository during a work period, drops banned
sessions and returns the rest newest first.
"""

from __future__ import annotations

import logging
from collections.abc import Container, Iterable
from datetime import datetime
from pathlib import Path

from ..exceptions import PromptStoryError
from .base import (
    LocalSession,
    SessionDiscoverer,
    get_discoverer,
    get_discoverers,
    register_discoverer,
    unregister_discoverer,
)
from .claude_code import ClaudeCodeDiscoverer
from .cursor import CursorDiscoverer, CursorSession

logger = logging.getLogger(__name__)

register_discoverer(ClaudeCodeDiscoverer())
register_discoverer(CursorDiscoverer())


def find_sessions(
    repo_root: Path,
    start: datetime,
    end: datetime,
    banned: Container[str] = frozenset(),
    discoverers: Iterable[SessionDiscoverer] | None = None,
) -> list[LocalSession]:
    """
    Merge the sessions of every discoverer.

    A discoverer that fails is logged and skipped; the others still
    contribute.

    Args:
        repo_root: Repository working tree root
        start: Work period start (inclusive)
        end: Work period end (inclusive)
        banned: Session ids never to capture
        discoverers: Discoverers to ask (default: all registered)

    Returns:
        Sessions sorted by ``modified``, most recent first
    """
    sessions: list[LocalSession] = []
    for discoverer in discoverers if discoverers is not None else get_discoverers():
        try:
            found = discoverer.discover(repo_root, start, end)
        except (OSError, PromptStoryError) as e:
            logger.warning("Session discovery for %s failed: %s", discoverer.tool, e)
            continue
        for session in found:
            if session.id in banned:
                logger.info("Skipping banned session %s/%s", session.tool, session.id)
                continue
            sessions.append(session)

    sessions.sort(key=lambda s: s.modified, reverse=True)
    return sessions


def count_all_user_actions(
    sessions: Iterable[LocalSession],
    start: datetime,
    end: datetime,
    discoverers: Iterable[SessionDiscoverer] | None = None,
) -> int:
    """Sum user actions across sessions, using each session's own discoverer."""
    by_tool: dict[str, list[LocalSession]] = {}
    for session in sessions:
        by_tool.setdefault(session.tool, []).append(session)

    known = {d.tool: d for d in discoverers} if discoverers is not None else None
    total = 0
    for tool, tool_sessions in by_tool.items():
        discoverer = known.get(tool) if known is not None else get_discoverer(tool)
        if discoverer is not None:
            total += discoverer.count_user_actions(tool_sessions, start, end)
    return total


__all__ = [
    "ClaudeCodeDiscoverer",
    "CursorDiscoverer",
    "CursorSession",
    "LocalSession",
    "SessionDiscoverer",
    "count_all_user_actions",
    "find_sessions",
    "get_discoverer",
    "get_discoverers",
    "register_discoverer",
    "unregister_discoverer",
]
