"""
Tests for single-record redaction.
"""

import json
from datetime import timedelta

import pytest

from prompt_story.exceptions import RecordNotFoundError
from prompt_story.redaction import REDACTED_PLACEHOLDER, RedactionTarget, redact_content, redact_record


def _line(text: str, stamp: str) -> bytes:
    record = {"type": "user", "timestamp": stamp, "message": {"role": "user", "content": text}}
    return json.dumps(record).encode()


class TestRedactionTarget:
    def test_parse(self, t0):
        target = RedactionTarget.parse("claude-code/abc-123@2025-01-15T08:00:00Z")

        assert target.tool == "claude-code"
        assert target.session_id == "abc-123"
        assert target.timestamp == t0
        assert str(target) == "claude-code/abc-123@2025-01-15T08:00:00Z"

    @pytest.mark.parametrize(
        "text",
        ["abc@2025-01-15T08:00:00Z", "claude-code/abc", "claude-code/abc@yesterday", "claude-code/a/b@2025-01-15"],
    )
    def test_parse_invalid(self, text):
        with pytest.raises(ValueError):
            RedactionTarget.parse(text)


class TestRedactContent:
    """Tests for rewriting one transcript record."""

    def test_only_target_record_changes(self, t0):
        lines = [
            _line("first", "2025-01-15T08:00:00Z"),
            _line("my password is hunter2", "2025-01-15T08:05:00Z"),
            b'{"type": "assistant",  "timestamp": "2025-01-15T08:06:00Z"}',
        ]
        content = b"\n".join(lines) + b"\n"

        result = redact_content(content, t0 + timedelta(minutes=5))

        out = result.split(b"\n")
        assert out[0] == lines[0]
        assert out[2] == lines[2]
        assert out[3] == b""
        assert json.loads(out[1])["message"]["content"] == REDACTED_PLACEHOLDER

    def test_nearest_record_within_tolerance(self, t0):
        content = b"\n".join(
            [_line("a", "2025-01-15T08:00:00.100Z"), _line("b", "2025-01-15T08:00:00.700Z")]
        )

        result = redact_content(content, t0 + timedelta(milliseconds=650))

        out = result.split(b"\n")
        assert json.loads(out[0])["message"]["content"] == "a"
        assert json.loads(out[1])["message"]["content"] == REDACTED_PLACEHOLDER

    def test_outside_tolerance(self, t0):
        content = _line("a", "2025-01-15T08:00:00Z")

        with pytest.raises(RecordNotFoundError):
            redact_content(content, t0 + timedelta(seconds=1), path="claude-code/s1.jsonl")

    def test_top_level_content_redacted(self):
        record = {"type": "queue-operation", "content": "secret", "timestamp": "x"}

        assert redact_record(record)["content"] == REDACTED_PLACEHOLDER
        assert record["content"] == "secret"
