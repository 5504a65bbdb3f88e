"""
Tests for local session discovery.
"""

import asyncio
import json
from datetime import timedelta

import aiosqlite
import pytest
from conftest import make_record

from prompt_story.discovery import (
    ClaudeCodeDiscoverer,
    CursorDiscoverer,
    count_all_user_actions,
    find_sessions,
    get_discoverer,
)
from prompt_story.discovery.cursor import count_user_bubbles, touched_paths, workspace_root
from prompt_story.records import count_user_actions, is_user_action


@pytest.fixture
def period(t0):
    return t0, t0 + timedelta(hours=4)


@pytest.fixture
def discoverer(projects_dir):
    return ClaudeCodeDiscoverer(projects_dir)


class TestRepoMatching:
    """Tests for deciding which sessions belong to the repository."""

    def test_session_in_repo(self, discoverer, write_session, repo_root, period, t0):
        write_session("s1", [make_record("user", "fix the bug", t0 + timedelta(hours=1), cwd=str(repo_root))])

        sessions = discoverer.discover(repo_root, *period)

        assert [s.id for s in sessions] == ["s1"]
        assert sessions[0].tool == "claude-code"
        assert sessions[0].created == t0 + timedelta(hours=1)

    def test_session_in_subdirectory(self, discoverer, write_session, repo_root, period, t0):
        cwd = str(repo_root / "src")
        write_session("s1", [make_record("user", "hi", t0 + timedelta(hours=1), cwd=cwd)])

        assert [s.id for s in discoverer.discover(repo_root, *period)] == ["s1"]

    def test_session_elsewhere(self, discoverer, write_session, repo_root, tmp_path, period, t0):
        write_session("s1", [make_record("user", "hi", t0 + timedelta(hours=1), cwd=str(tmp_path / "other"))])

        assert discoverer.discover(repo_root, *period) == []

    def test_sibling_with_common_prefix(self, discoverer, write_session, repo_root, period, t0):
        cwd = str(repo_root) + "-fork"
        write_session("s1", [make_record("user", "hi", t0 + timedelta(hours=1), cwd=cwd)])

        assert discoverer.discover(repo_root, *period) == []

    def test_parent_directory_with_writes(self, discoverer, write_session, repo_root, tmp_path, period, t0):
        at = t0 + timedelta(hours=1)
        edit = {
            "type": "assistant",
            "timestamp": at.isoformat(),
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "tool_use", "id": "t1", "name": "Edit", "input": {"file_path": str(repo_root / "a.py")}}
                ],
            },
        }
        write_session("s1", [make_record("user", "edit it", at, cwd=str(tmp_path)), edit])

        assert [s.id for s in discoverer.discover(repo_root, *period)] == ["s1"]

    def test_parent_directory_without_writes(self, discoverer, write_session, repo_root, tmp_path, period, t0):
        write_session("s1", [make_record("user", "look around", t0 + timedelta(hours=1), cwd=str(tmp_path))])

        assert discoverer.discover(repo_root, *period) == []


class TestPeriodFiltering:
    """Tests for the work period filters."""

    def test_session_before_period(self, discoverer, write_session, repo_root, period, t0):
        write_session("s1", [make_record("user", "old", t0 - timedelta(hours=3), cwd=str(repo_root))])

        assert discoverer.discover(repo_root, *period) == []

    def test_session_started_after_period(self, discoverer, write_session, repo_root, period, t0):
        write_session("s1", [make_record("user", "later", t0 + timedelta(hours=5), cwd=str(repo_root))])

        assert discoverer.discover(repo_root, *period) == []

    def test_no_user_messages_in_period(self, discoverer, write_session, repo_root, period, t0):
        records = [
            make_record("user", "before", t0 - timedelta(hours=1), cwd=str(repo_root)),
            make_record("assistant", "working", t0 + timedelta(hours=1)),
        ]
        write_session("s1", records)

        assert discoverer.discover(repo_root, *period) == []

    def test_overlapping_session_included(self, discoverer, write_session, repo_root, period, t0):
        records = [
            make_record("user", "start", t0 - timedelta(hours=1), cwd=str(repo_root)),
            make_record("user", "continue", t0 + timedelta(hours=1)),
        ]
        write_session("s1", records)

        sessions = discoverer.discover(repo_root, *period)

        assert [s.id for s in sessions] == ["s1"]
        assert sessions[0].created == t0 - timedelta(hours=1)

    def test_malformed_lines_skipped(self, discoverer, projects_dir, repo_root, period, t0):
        directory = projects_dir / "-repo"
        directory.mkdir()
        good = make_record("user", "hi", t0 + timedelta(hours=1), cwd=str(repo_root))
        (directory / "s1.jsonl").write_text("{broken\n" + json.dumps(good) + "\n")

        assert [s.id for s in discoverer.discover(repo_root, *period)] == ["s1"]


class TestFindSessions:
    """Tests for merging discoverers."""

    def test_sorted_newest_first(self, discoverer, write_session, repo_root, period, t0):
        write_session("older", [make_record("user", "a", t0 + timedelta(hours=1), cwd=str(repo_root))])
        write_session("newer", [make_record("user", "b", t0 + timedelta(hours=2), cwd=str(repo_root))])

        sessions = find_sessions(repo_root, *period, discoverers=[discoverer])

        assert [s.id for s in sessions] == ["newer", "older"]

    def test_banned_sessions_dropped(self, discoverer, write_session, repo_root, period, t0):
        write_session("s1", [make_record("user", "a", t0 + timedelta(hours=1), cwd=str(repo_root))])
        write_session("s2", [make_record("user", "b", t0 + timedelta(hours=1), cwd=str(repo_root))])

        sessions = find_sessions(repo_root, *period, banned={"s1"}, discoverers=[discoverer])

        assert [s.id for s in sessions] == ["s2"]

    def test_missing_projects_dir(self, tmp_path, repo_root, period):
        discoverer = ClaudeCodeDiscoverer(tmp_path / "does-not-exist")

        assert find_sessions(repo_root, *period, discoverers=[discoverer]) == []

    def test_registered_by_default(self):
        assert isinstance(get_discoverer("claude-code"), ClaudeCodeDiscoverer)

    def test_find_local(self, discoverer, write_session, repo_root, t0):
        path = write_session("s1", [make_record("user", "a", t0, cwd=str(repo_root))])

        assert discoverer.find_local("s1") == path
        assert discoverer.find_local("missing") is None


class TestUserActions:
    """Tests for counting what the human did."""

    def test_prompt_counts(self, t0):
        assert is_user_action(make_record("user", "do it", t0))

    def test_tool_result_does_not_count(self, t0):
        record = make_record("user", "", t0)
        record["message"]["content"] = [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]

        assert not is_user_action(record)

    def test_tool_rejection_counts(self, t0):
        record = make_record("user", "", t0)
        record["message"]["content"] = [
            {"type": "tool_result", "tool_use_id": "t1", "is_error": True, "content": "The user's tool use was rejected"}
        ]

        assert is_user_action(record)

    def test_meta_and_command_output_do_not_count(self, t0):
        assert not is_user_action(make_record("user", "x", t0, isMeta=True))
        assert not is_user_action(make_record("user", "<local-command-stdout>ok", t0))

    def test_queued_prompt(self, t0):
        queued = {"type": "queue-operation", "operation": "enqueue", "content": "next task", "timestamp": t0.isoformat()}
        command = {**queued, "content": "/clear"}

        assert is_user_action(queued)
        assert not is_user_action(command)

    def test_count_in_period(self, t0):
        records = [
            make_record("user", "before", t0 - timedelta(minutes=1)),
            make_record("user", "inside", t0),
            make_record("assistant", "reply", t0 + timedelta(minutes=1)),
        ]

        assert count_user_actions(records, t0, t0 + timedelta(hours=1)) == 1

    def test_agent_sessions_not_counted(self, discoverer, write_session, repo_root, period, t0):
        at = t0 + timedelta(hours=1)
        write_session("s1", [make_record("user", "a", at, cwd=str(repo_root))])
        write_session("agent-x1", [make_record("user", "b", at, cwd=str(repo_root))])
        sessions = discoverer.discover(repo_root, *period)

        assert {s.id for s in sessions} == {"s1", "agent-x1"}
        assert count_all_user_actions(sessions, *period, discoverers=[discoverer]) == 1


def _millis(when):
    return int(when.timestamp() * 1000)


async def _create_cursor_db(path, rows):
    async with aiosqlite.connect(path) as conn:
        await conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
        await conn.executemany("INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", rows)
        await conn.commit()


@pytest.fixture
def cursor_db(tmp_path, repo_root):
    """Factory writing composer rows (and optional bubble rows) to a state.vscdb."""
    (repo_root / ".git").mkdir(exist_ok=True)
    path = tmp_path / "state.vscdb"

    def _write(composers, bubbles=()):
        rows = [(f"composerData:{c['composerId']}", json.dumps(c)) for c in composers]
        rows += [(key, json.dumps(value)) for key, value in bubbles]
        asyncio.run(_create_cursor_db(path, rows))
        return path

    return _write


def _composer(composer_id, created, updated, files, conversation=()):
    return {
        "composerId": composer_id,
        "createdAt": _millis(created),
        "lastUpdatedAt": _millis(updated),
        "originalFileStates": {f"file://{f}": {} for f in files},
        "conversation": list(conversation),
    }


class TestCursorDiscovery:
    """Tests for Cursor sessions read from state.vscdb."""

    def test_session_touching_repo_files(self, cursor_db, repo_root, period, t0):
        files = [str(repo_root / "src" / "a.py"), str(repo_root / "README.md")]
        db = cursor_db([_composer("c1", t0 + timedelta(hours=1), t0 + timedelta(hours=2), files)])

        sessions = CursorDiscoverer(db).discover(repo_root, *period)

        assert [s.id for s in sessions] == ["c1"]
        assert sessions[0].tool == "cursor"
        assert sessions[0].ext == ".json"
        assert sessions[0].created == t0 + timedelta(hours=1)
        assert sessions[0].modified == t0 + timedelta(hours=2)

    def test_session_elsewhere_or_outside_period(self, cursor_db, repo_root, tmp_path, period, t0):
        other = tmp_path / "other"
        (other / ".git").mkdir(parents=True)
        db = cursor_db(
            [
                _composer("elsewhere", t0, t0 + timedelta(hours=1), [str(other / "x.py")]),
                _composer("old", t0 - timedelta(days=2), t0 - timedelta(days=1), [str(repo_root / "a.py")]),
                _composer("no-files", t0, t0 + timedelta(hours=1), []),
            ]
        )

        assert CursorDiscoverer(db).discover(repo_root, *period) == []

    def test_bubble_times_extend_modified(self, cursor_db, repo_root, period, t0):
        bubble = {"type": 1, "text": "hi", "timingInfo": {"clientStartTime": _millis(t0 + timedelta(hours=3))}}
        composer = _composer("c1", t0, t0 + timedelta(minutes=5), [str(repo_root / "a.py")], [bubble])
        db = cursor_db([composer])

        [session] = CursorDiscoverer(db).discover(repo_root, *period)

        assert session.modified == t0 + timedelta(hours=3)

    def test_missing_database(self, tmp_path, repo_root, period):
        assert CursorDiscoverer(tmp_path / "missing.vscdb").discover(repo_root, *period) == []

    def test_content_includes_separate_bubbles(self, cursor_db, repo_root, period, t0):
        at = t0 + timedelta(hours=1)
        bubbles = [
            ("bubbleId:c1:b1", {"type": 1, "text": "add a test", "timingInfo": {"clientStartTime": _millis(at)}}),
            ("bubbleId:c1:b2", {"type": 2, "text": "Added."}),
            ("bubbleId:c2:b1", {"type": 1, "text": "other session"}),
        ]
        db = cursor_db([_composer("c1", t0, at, [str(repo_root / "a.py")])], bubbles)
        discoverer = CursorDiscoverer(db)
        [session] = discoverer.discover(repo_root, *period)

        content = json.loads(session.read_content())

        assert content["composerId"] == "c1"
        assert [b["text"] for b in content["_bubbles"]] == ["add a test", "Added."]
        assert discoverer.count_user_actions([session], *period) == 1
        assert count_all_user_actions([session], *period, discoverers=[discoverer]) == 1

    def test_registered(self):
        assert isinstance(get_discoverer("cursor"), CursorDiscoverer)


class TestCursorHelpers:
    def test_touched_paths_from_both_layouts(self):
        data = {
            "originalFileStates": {"file:///work/repo/my%20file.py": {}},
            "conversation": [
                {"codeBlocks": [{"uri": {"fsPath": "/work/repo/a.py"}}]},
                {"checkpoint": {"files": [{"uri": {"fsPath": "/work/repo/b.py"}}]}},
            ],
        }

        assert touched_paths(data) == ["/work/repo/my file.py", "/work/repo/a.py", "/work/repo/b.py"]

    def test_workspace_root_is_git_root(self, repo_root):
        (repo_root / ".git").mkdir()

        assert workspace_root([str(repo_root / "src" / "a.py"), str(repo_root / "b.py")]) == str(repo_root)
        assert workspace_root([]) is None

    def test_count_user_bubbles(self, t0):
        data = {
            "conversation": [
                {"type": 1, "text": "in range", "timingInfo": {"clientStartTime": _millis(t0)}},
                {"type": 1, "text": "too late", "timingInfo": {"clientStartTime": _millis(t0 + timedelta(days=1))}},
                {"type": 1, "text": ""},
                {"type": 2, "text": "assistant"},
            ],
            "_bubbles": [{"type": 1, "text": "undated"}],
        }

        assert count_user_bubbles(data, t0, t0 + timedelta(hours=1)) == 2
