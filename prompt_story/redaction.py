"""
User-requested redaction of a single transcript record.

A record is addressed by ``<tool>/<session-id>@<timestamp>``. The record
whose timestamp is nearest to the requested one, within the match
tolerance, has its content replaced with a placeholder. Every other line
of the transcript is left exactly as it was.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .exceptions import RecordNotFoundError
from .scrub import dump_record
from .time_utils import DEFAULT_MATCH_TOLERANCE, format_timestamp, parse_timestamp, to_utc

logger = logging.getLogger(__name__)

REDACTED_PLACEHOLDER = "<REDACTED BY USER>"


@dataclass(frozen=True)
class RedactionTarget:
    """The record to redact: tool, session id and record timestamp."""

    tool: str
    session_id: str
    timestamp: datetime

    @classmethod
    def parse(cls, text: str) -> RedactionTarget:
        """
        Parse ``<tool>/<session-id>@<timestamp>``.

        Raises:
            ValueError: If the target is malformed
        """
        location, sep, stamp = text.strip().rpartition("@")
        tool, slash, session_id = location.partition("/")
        if not sep or not slash or not tool or not session_id or "/" in session_id:
            raise ValueError(f"Expected <tool>/<session-id>@<timestamp>, got {text!r}")
        timestamp = parse_timestamp(stamp)
        if timestamp is None:
            raise ValueError(f"Invalid timestamp in redaction target: {stamp!r}")
        return cls(tool=tool, session_id=session_id, timestamp=timestamp)

    def __str__(self) -> str:
        return f"{self.tool}/{self.session_id}@{format_timestamp(self.timestamp)}"


def redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``record`` with its message content replaced."""
    redacted = dict(record)
    message = record.get("message")
    if isinstance(message, dict) and "content" in message:
        redacted["message"] = {**message, "content": REDACTED_PLACEHOLDER}
    if "content" in record:
        redacted["content"] = REDACTED_PLACEHOLDER
    return redacted


def _line_timestamp(line: bytes) -> tuple[dict[str, Any] | None, datetime | None]:
    if not line.strip():
        return None, None
    try:
        record = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None
    if not isinstance(record, dict):
        return None, None
    return record, parse_timestamp(record.get("timestamp"))


def redact_content(
    content: bytes,
    timestamp: datetime,
    tolerance: timedelta = DEFAULT_MATCH_TOLERANCE,
    path: str = "",
) -> bytes:
    """
    Redact the record nearest to ``timestamp`` in a JSONL transcript.

    Args:
        content: Transcript bytes
        timestamp: Timestamp of the record to redact
        tolerance: Records further away than this never match
        path: Transcript path, for error messages

    Returns:
        The new transcript bytes

    Raises:
        RecordNotFoundError: If no record is within ``tolerance``
    """
    target = to_utc(timestamp)
    lines = content.split(b"\n")

    best: tuple[timedelta, int, dict[str, Any]] | None = None
    for index, line in enumerate(lines):
        record, stamp = _line_timestamp(line)
        if record is None or stamp is None:
            continue
        distance = abs(stamp - target)
        if distance < tolerance and (best is None or distance < best[0]):
            best = (distance, index, record)

    if best is None:
        raise RecordNotFoundError(path, format_timestamp(target))

    _, index, record = best
    lines[index] = dump_record(redact_record(record)).encode("utf-8")
    logger.debug("Redacted record on line %d of %s", index + 1, path or "transcript")
    return b"\n".join(lines)
