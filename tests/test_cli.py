"""
Tests for the command line interface against a real temporary repository.
"""

import io
import json
import shutil
import subprocess
from datetime import UTC, datetime

import pytest

from prompt_story.cli import build_parser, main
from prompt_story.notes import Note, NoteStore, SessionEntry
from prompt_story.store import GitObjectStore

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def repo(tmp_path, monkeypatch):
    for key, value in {
        "GIT_CONFIG_GLOBAL": "/dev/null",
        "GIT_CONFIG_NOSYSTEM": "1",
        "GIT_AUTHOR_NAME": "Test",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test",
        "GIT_COMMITTER_EMAIL": "test@example.com",
        "PROMPT_STORY_CLAUDE_PROJECTS_DIR": str(tmp_path / "no-sessions"),
        "PROMPT_STORY_CURSOR_DB_PATH": str(tmp_path / "no-cursor" / "state.vscdb"),
    }.items():
        monkeypatch.setenv(key, value)
    path = tmp_path / "repo"
    path.mkdir()
    subprocess.run(["git", "init", "-q"], cwd=path, check=True)
    subprocess.run(["git", "commit", "--allow-empty", "-q", "-m", "first"], cwd=path, check=True)
    return path


class TestParser:
    def test_add_defaults_to_head(self):
        args = build_parser().parse_args(["add"])

        assert args.commit == "HEAD"
        assert args.force is False

    def test_remove_requires_commit(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["remove"])


class TestCommands:
    def test_add_without_sessions_succeeds(self, repo, capsys):
        assert main(["-C", str(repo), "add"]) == 0

        assert "skipped" in capsys.readouterr().out

    def test_ban_list_lives_in_git_dir(self, repo, capsys):
        assert main(["-C", str(repo), "ban", "s1", "--tool", "claude-code"]) == 0
        assert (repo / ".git" / "prompt-story" / "banned.json").is_file()

        assert main(["-C", str(repo), "banned"]) == 0
        assert "claude-code/s1" in capsys.readouterr().out

    def test_unknown_commit_fails(self, repo, capsys):
        assert main(["-C", str(repo), "add", "nope"]) == 1

        assert "Error" in capsys.readouterr().err

    def test_redact_without_transcript_fails(self, repo):
        assert main(["-C", str(repo), "redact", "claude-code/s1@2025-01-15T08:00:00Z"]) == 1

    def test_remove_asks_whether_to_ban_each_session(self, repo, monkeypatch, capsys):
        store = GitObjectStore(cwd=repo)
        at = datetime(2025, 1, 15, 8, 0, tzinfo=UTC)
        sessions = [
            SessionEntry(tool="claude-code", id=s, path=f"claude-code/{s}.jsonl", created=at, modified=at)
            for s in ("s1", "s2")
        ]
        NoteStore(store).put(store.resolve_commit("HEAD"), Note(start_work=at, sessions=sessions))
        # Confirm removal, accept the default for s1, decline for s2
        monkeypatch.setattr("sys.stdin", io.StringIO("y\n\nn\n"))

        assert main(["-C", str(repo), "remove", "HEAD"]) == 0

        assert "[Y/n]" in capsys.readouterr().out
        ban_file = repo / ".git" / "prompt-story" / "banned.json"
        assert [b["id"] for b in json.loads(ban_file.read_text())["banned"]] == ["s1"]
        assert all(s.removed for s in NoteStore(store).get(store.resolve_commit("HEAD")).sessions)

    def test_remove_with_yes_does_not_ban(self, repo):
        store = GitObjectStore(cwd=repo)
        at = datetime(2025, 1, 15, 8, 0, tzinfo=UTC)
        entry = SessionEntry(tool="claude-code", id="s1", path="claude-code/s1.jsonl", created=at, modified=at)
        NoteStore(store).put(store.resolve_commit("HEAD"), Note(start_work=at, sessions=[entry]))

        assert main(["-C", str(repo), "remove", "HEAD", "--yes"]) == 0

        assert not (repo / ".git" / "prompt-story" / "banned.json").exists()
