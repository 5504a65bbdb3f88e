"""
Tests for notes, the note store and work periods.
"""

import json
from datetime import timedelta

import pytest

from prompt_story.exceptions import CommitResolutionError, NoteNotFoundError
from prompt_story.notes import (
    LEGACY_NOTES_REF,
    NOTES_REF,
    ROOT_COMMIT_LOOKBACK,
    Note,
    NoteStore,
    SessionEntry,
    derive_work_period,
    merge_notes,
    parse_note,
    records_in_period,
    work_period,
)
from prompt_story.store import MemoryObjectStore


def _entry(session_id, created, modified, tool="claude-code"):
    return SessionEntry(
        tool=tool, id=session_id, path=f"{tool}/{session_id}.jsonl", created=created, modified=modified
    )


class TestNoteFormat:
    """Tests for note JSON."""

    def test_roundtrip_fields(self, t0):
        note = Note(start_work=t0, sessions=[_entry("s1", t0, t0 + timedelta(minutes=5))])

        data = json.loads(note.to_json())

        assert data["version"] == 1
        assert data["start_work"] == "2025-01-15T08:00:00Z"
        assert data["sessions"][0]["path"] == "claude-code/s1.jsonl"
        assert "removed" not in data["sessions"][0]
        assert parse_note(note.to_json()) == note

    def test_removed_fields_written(self, t0):
        entry = _entry("s1", t0, t0)
        entry.removed = True
        entry.removed_at = t0 + timedelta(days=1)

        data = Note(start_work=t0, sessions=[entry]).to_dict()

        assert data["sessions"][0]["removed"] is True
        assert data["sessions"][0]["removed_at"] == "2025-01-16T08:00:00Z"

    def test_legacy_version_key(self):
        note = parse_note('{"v": 1, "start_work": "2025-01-15T08:00:00Z", "sessions": []}')

        assert note.version == 1
        assert note.sessions == []

    @pytest.mark.parametrize(
        "text",
        [
            "[]",
            '{"version": 1, "sessions": []}',
            '{"version": "one", "start_work": "2025-01-15T08:00:00Z"}',
            '{"version": 1, "start_work": "2025-01-15T08:00:00Z", "sessions": [{"id": "x"}]}',
        ],
    )
    def test_invalid_notes(self, text):
        with pytest.raises(ValueError):
            parse_note(text)

    def test_summary_line(self, t0):
        note = Note(start_work=t0, sessions=[_entry("s1", t0, t0)])

        assert note.summary_line(3) == "Prompt-Story: Used Claude Code (3 user prompts)"
        assert note.summary_line(3, "amended") == "Prompt-Story: Used Claude Code (3 user prompts) [amended]"

    def test_summary_line_without_active_sessions(self, t0):
        entry = _entry("s1", t0, t0)
        entry.removed = True

        assert Note(start_work=t0, sessions=[entry]).summary_line(0) == "Prompt-Story: none"


class TestMergeNotes:
    """Tests for combining notes of squashed commits."""

    def test_merge(self, t0):
        a = Note(start_work=t0 + timedelta(hours=1), sessions=[_entry("s2", t0 + timedelta(hours=1), t0)])
        b = Note(start_work=t0, sessions=[_entry("s1", t0, t0), _entry("s2", t0, t0)])

        merged = merge_notes([a, b])

        assert merged.start_work == t0
        assert [s.id for s in merged.sessions] == ["s1", "s2"]
        assert merged.session("s2").created == t0 + timedelta(hours=1)

    def test_merge_empty(self):
        assert merge_notes([]) is None


class TestNoteStore:
    """Tests for reading and writing notes through the store."""

    def test_put_and_get(self, memory_store, commits, t0):
        notes = NoteStore(memory_store)
        note = Note(start_work=t0, sessions=[_entry("s1", t0, t0)])

        notes.put(commits["head"], note)

        assert notes.exists(commits["head"])
        assert notes.get(commits["head"]) == note
        assert memory_store.get_note(NOTES_REF, commits["head"]) is not None

    def test_legacy_ref_fallback(self, memory_store, commits, t0):
        note = Note(start_work=t0, sessions=[_entry("s1", t0, t0)])
        memory_store.set_note(LEGACY_NOTES_REF, commits["first"], note.to_json())

        assert NoteStore(memory_store).get(commits["first"]) == note
        assert NoteStore(memory_store, legacy_ref=None).get(commits["first"]) is None

    def test_plain_legacy_note_does_not_count(self, memory_store, commits, t0):
        memory_store.set_note(LEGACY_NOTES_REF, commits["head"], "Reviewed-by: someone")
        notes = NoteStore(memory_store)

        assert not notes.exists(commits["head"])
        assert notes.get(commits["head"]) is None

        memory_store.set_note(LEGACY_NOTES_REF, commits["first"], Note(start_work=t0).to_json())
        assert notes.exists(commits["first"])

    def test_malformed_note_ignored(self, memory_store, commits):
        memory_store.set_note(NOTES_REF, commits["head"], "not json at all")

        notes = NoteStore(memory_store)

        assert notes.exists(commits["head"])
        assert notes.get(commits["head"]) is None
        with pytest.raises(NoteNotFoundError):
            notes.require(commits["head"])

    def test_mark_session_removed(self, memory_store, commits, t0):
        notes = NoteStore(memory_store)
        notes.put(commits["head"], Note(start_work=t0, sessions=[_entry("s1", t0, t0), _entry("s2", t0, t0)]))

        assert notes.mark_session_removed(commits["head"], "s1", when=t0) is True

        note = notes.get(commits["head"])
        assert [s.id for s in note.sessions] == ["s1", "s2"]
        assert note.session("s1").removed is True
        assert note.session("s1").removed_at == t0
        assert [s.id for s in note.active_sessions()] == ["s2"]

    def test_mark_unknown_session(self, memory_store, commits, t0):
        notes = NoteStore(memory_store)
        notes.put(commits["head"], Note(start_work=t0, sessions=[_entry("s1", t0, t0)]))

        assert notes.mark_session_removed(commits["head"], "other") is False
        assert notes.mark_session_removed(commits["root"], "s1") is False

    def test_find_sessions_in_commits(self, memory_store, commits, t0):
        notes = NoteStore(memory_store)
        notes.put(commits["head"], Note(start_work=t0, sessions=[_entry("s1", t0, t0)]))
        notes.put(commits["first"], Note(start_work=t0, sessions=[_entry("s1", t0, t0), _entry("s2", t0, t0)]))

        found = notes.find_sessions_in_commits([commits["head"], commits["first"], commits["root"]])

        assert found["s1"].commits == [commits["head"], commits["first"]]
        assert found["s2"].commits == [commits["first"]]
        assert notes.find_commits_with_session("s2") == [commits["first"]]


class TestWorkPeriod:
    """Tests for work period computation."""

    def test_end_is_commit_time(self, memory_store, commits, t0):
        note = Note(start_work=t0, sessions=[])

        assert work_period(memory_store, commits["head"], note) == (t0, t0 + timedelta(hours=4))

    def test_fallback_to_latest_session(self, t0):
        store = MemoryObjectStore()
        sha = store.add_commit("no date", timestamp=None)
        note = Note(
            start_work=t0,
            sessions=[
                _entry("s1", t0, t0 + timedelta(minutes=30)),
                _entry("s2", t0, t0 + timedelta(minutes=90)),
                _entry("s3", t0, t0 + timedelta(minutes=60)),
            ],
        )

        assert work_period(store, sha, note) == (t0, t0 + timedelta(minutes=90))

    def test_fallback_without_sessions(self, t0):
        store = MemoryObjectStore()
        sha = store.add_commit("no date", timestamp=None)

        assert work_period(store, sha, Note(start_work=t0)) == (t0, t0)

    def test_derive_from_parent(self, memory_store, commits, t0):
        assert derive_work_period(memory_store, commits["head"]) == (
            t0 + timedelta(hours=2),
            t0 + timedelta(hours=4),
        )

    def test_derive_root_commit(self, memory_store, commits, t0):
        assert derive_work_period(memory_store, commits["root"]) == (t0 - ROOT_COMMIT_LOOKBACK, t0)

    def test_derive_without_timestamp(self):
        store = MemoryObjectStore()
        sha = store.add_commit("no date", timestamp=None)

        with pytest.raises(CommitResolutionError):
            derive_work_period(store, sha)

    def test_records_in_period_inclusive(self, t0):
        records = [
            {"timestamp": "2025-01-15T07:59:59Z"},
            {"timestamp": "2025-01-15T08:00:00Z"},
            {"snapshot": {"timestamp": "2025-01-15T09:00:00Z"}},
            {"type": "summary"},
        ]

        assert records_in_period(records, t0, t0 + timedelta(hours=1)) == records[1:3]
