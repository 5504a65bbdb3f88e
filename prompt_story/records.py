"""
Transcript record helpers.

A transcript is JSONL produced by an assistant: one JSON object per line,
most of them carrying a ``type`` (``user``, ``assistant``, ...) and an
RFC 3339 ``timestamp``. These helpers read records tolerantly: a malformed
line is logged and skipped, never fatal for the whole transcript.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Any

from .exceptions import TranscriptParseError
from .time_utils import parse_timestamp

logger = logging.getLogger(__name__)

TOOL_REJECTION_MARKER = "tool use was rejected"


def iter_records(content: bytes | str) -> Iterator[tuple[int, dict[str, Any]]]:
    """
    Yield ``(line_number, record)`` for every JSON object line.

    Blank lines are ignored. Malformed lines are logged at WARNING and
    skipped. Line numbers are 1-based positions in the original content.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    for number, line in enumerate(content.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping record: %s", TranscriptParseError(number, e.msg).message)
            continue
        if not isinstance(record, dict):
            logger.warning(
                "Skipping record: %s",
                TranscriptParseError(number, f"expected an object, got {type(record).__name__}").message,
            )
            continue
        yield number, record


def record_timestamp(record: dict[str, Any]) -> datetime | None:
    """Return the record's timestamp, falling back to ``snapshot.timestamp``."""
    stamp = parse_timestamp(record.get("timestamp"))
    if stamp is None:
        snapshot = record.get("snapshot")
        if isinstance(snapshot, dict):
            stamp = parse_timestamp(snapshot.get("timestamp"))
    return stamp


def session_bounds(records: Iterable[dict[str, Any]]) -> tuple[datetime | None, datetime | None]:
    """Return the first and last record timestamps (created, modified)."""
    first = last = None
    for record in records:
        stamp = record_timestamp(record)
        if stamp is None:
            continue
        if first is None:
            first = stamp
        last = stamp
    return first, last


def message_text(record: dict[str, Any]) -> str:
    """Concatenate the text content of a record's message."""
    message = record.get("message")
    if isinstance(message, str):
        return message
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "".join(p for p in parts if isinstance(p, str))
    return ""


def _tool_result_kind(record: dict[str, Any]) -> tuple[bool, bool]:
    """Return (is_tool_result, is_rejection) for a record's message content."""
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return False, False
    is_result = is_rejection = False
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        is_result = True
        text = block.get("content")
        if block.get("is_error") and isinstance(text, str) and TOOL_REJECTION_MARKER in text:
            is_rejection = True
    return is_result, is_rejection


def is_user_message(record: dict[str, Any]) -> bool:
    return record.get("type") == "user"


def is_user_action(record: dict[str, Any]) -> bool:
    """True when a record is something the human did.

    Prompts, slash commands, queued prompts and tool rejections count.
    Tool results, local command output and meta records do not.
    """
    if record.get("isMeta"):
        return False

    kind = record.get("type")
    if kind == "tool_reject":
        return True
    if kind == "queue-operation":
        text = record.get("content")
        return (
            record.get("operation") == "enqueue"
            and isinstance(text, str)
            and bool(text)
            and not text.startswith(("<bash-notification>", "/"))
        )
    if kind != "user" or record.get("message") is None:
        return False

    text = message_text(record)
    if text.startswith("<local-command-stdout>"):
        return False
    is_result, is_rejection = _tool_result_kind(record)
    if is_rejection:
        return True
    if is_result:
        return False
    return text != ""


def in_period(stamp: datetime | None, start: datetime, end: datetime) -> bool:
    """Inclusive ``start <= stamp <= end``; records without a timestamp never match."""
    return stamp is not None and start <= stamp <= end


def count_user_actions(records: Iterable[dict[str, Any]], start: datetime, end: datetime) -> int:
    return sum(
        1 for record in records if in_period(record_timestamp(record), start, end) and is_user_action(record)
    )


def count_user_messages(records: Iterable[dict[str, Any]], start: datetime, end: datetime) -> int:
    return sum(
        1 for record in records if is_user_message(record) and in_period(record_timestamp(record), start, end)
    )
