"""
Shared test configuration and fixtures.

Provides an in-memory object store with a small linear commit graph and a
temporary Claude Code projects directory with a helper for writing
session files into it.

Commit graph (author times, UTC):
    root  2025-01-15 08:00
    first 2025-01-15 10:00
    head  2025-01-15 12:00
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from prompt_story.config import PromptStoryConfig
from prompt_story.discovery import ClaudeCodeDiscoverer
from prompt_story.lifecycle import PromptStory
from prompt_story.store import MemoryObjectStore
from prompt_story.time_utils import format_timestamp

logger = logging.getLogger(__name__)

T0 = datetime(2025, 1, 15, 8, 0, tzinfo=UTC)


def make_record(kind: str, text: str, at: datetime, cwd: str | None = None, **extra) -> dict:
    """Build one transcript record the way Claude Code writes it."""
    record = {
        "type": kind,
        "timestamp": format_timestamp(at),
        "message": {"role": kind, "content": text},
    }
    if cwd is not None:
        record["cwd"] = cwd
    record.update(extra)
    return record


def to_jsonl(records: list[dict]) -> bytes:
    return ("\n".join(json.dumps(r) for r in records) + "\n").encode("utf-8")


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    """Store with commits root -> first -> head, two hours apart."""
    store = MemoryObjectStore()
    store.add_commit("Initial commit", T0, parent=None)
    store.add_commit("Add parser\n\nPrompt-Story: Used Claude Code (2 user prompts)", T0 + timedelta(hours=2))
    store.add_commit("Fix parser", T0 + timedelta(hours=4))
    return store


@pytest.fixture
def commits(memory_store) -> dict[str, str]:
    """Commit ids of the fixture graph by name."""
    head = memory_store.resolve_commit("HEAD")
    return {
        "head": head,
        "first": memory_store.resolve_commit("HEAD~1"),
        "root": memory_store.resolve_commit("HEAD~2"),
    }


@pytest.fixture
def repo_root(tmp_path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def projects_dir(tmp_path) -> Path:
    path = tmp_path / "claude-projects"
    path.mkdir()
    return path


@pytest.fixture
def write_session(projects_dir):
    """
    Fixture returning a writer for Claude Code session files.

    ``write_session(session_id, records, project="-repo")`` writes the
    records as JSONL and returns the file path.
    """

    def _write(session_id: str, records: list[dict], project: str = "-repo") -> Path:
        directory = projects_dir / project
        directory.mkdir(exist_ok=True)
        path = directory / f"{session_id}.jsonl"
        path.write_bytes(to_jsonl(records))
        return path

    return _write


@pytest.fixture
def config(tmp_path, projects_dir) -> PromptStoryConfig:
    return PromptStoryConfig(
        claude_projects_dir=projects_dir,
        ban_list_path=tmp_path / "git" / "prompt-story" / "banned.json",
    )


@pytest.fixture
def engine(memory_store, config, repo_root, projects_dir) -> PromptStory:
    """Lifecycle engine over the in-memory store and temporary sessions."""
    return PromptStory(
        memory_store,
        config,
        repo_root=repo_root,
        discoverers=[ClaudeCodeDiscoverer(projects_dir)],
    )
