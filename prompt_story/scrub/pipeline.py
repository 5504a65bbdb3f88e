"""
Transcript scrub pipeline.

Transcripts are JSONL: one JSON object per line. Every transcript passes
through three stages before it is hashed into the object store:

1. Node removal drops bulky mirror fields the assistant records next to
   the real message content.
2. Tool-output redaction blanks the results of configured tools (by
   default ``Read``, i.e. whole file contents). A tool result references
   its invocation by id, possibly many records later, so the full id index
   is built over the whole transcript before any record is rewritten.
3. Pattern redaction rewrites string leaves with the PII recognizers.

Records no stage changed are emitted exactly as they were read.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from ..exceptions import TranscriptParseError
from .recognizers import DEFAULT_RECOGNIZERS, Recognizer, build_recognizers, scrub_text, scrub_value

logger = logging.getLogger(__name__)

TOOL_OUTPUT_PLACEHOLDER = "<REDACTED>"
DEFAULT_REDACTED_TOOLS: tuple[str, ...] = ("Read",)
TOOL_USE_RESULT_FIELD = "toolUseResult"


def dump_record(record: dict[str, Any]) -> str:
    """Serialize a record as a single compact JSONL line."""
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def _has_structured_answers(value: Any) -> bool:
    # AskUserQuestion results carry the user's decisions only in the mirror
    return isinstance(value, dict) and ("answers" in value or "questions" in value)


@dataclass(frozen=True)
class NodeRemovalRule:
    """Drop a top-level field from every record unless ``keep_if`` says otherwise."""

    field: str
    keep_if: Callable[[Any], bool] | None = None

    def apply(self, record: dict[str, Any]) -> dict[str, Any]:
        if self.field not in record:
            return record
        if self.keep_if is not None and self.keep_if(record[self.field]):
            return record
        return {key: value for key, value in record.items() if key != self.field}


DEFAULT_NODE_RULES: tuple[NodeRemovalRule, ...] = (
    NodeRemovalRule(TOOL_USE_RESULT_FIELD, keep_if=_has_structured_answers),
)


def _content_blocks(record: dict[str, Any]) -> list[Any]:
    message = record.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        return message["content"]
    return []


def build_tool_use_index(
    records: Iterable[dict[str, Any] | None], tool_names: Iterable[str]
) -> Mapping[str, str]:
    """Map ``tool_use`` ids to tool names for every invocation of a listed tool."""
    wanted = frozenset(tool_names)
    index: dict[str, str] = {}
    if not wanted:
        return MappingProxyType(index)
    for record in records:
        if record is None:
            continue
        for block in _content_blocks(record):
            if (
                isinstance(block, dict)
                and block.get("type") == "tool_use"
                and block.get("name") in wanted
                and isinstance(block.get("id"), str)
            ):
                index[block["id"]] = block["name"]
    return MappingProxyType(index)


def redact_tool_results(record: dict[str, Any], index: Mapping[str, str]) -> dict[str, Any]:
    """Replace the content of tool results whose invocation is in ``index``.

    Returns the record unchanged (same object) when nothing matched.
    """
    blocks = _content_blocks(record)
    if not index or not blocks:
        return record

    changed = False
    new_blocks = []
    for block in blocks:
        if (
            isinstance(block, dict)
            and block.get("type") == "tool_result"
            and block.get("tool_use_id") in index
        ):
            content = block.get("content")
            if isinstance(content, list):
                replacement: Any = [{"type": "text", "text": TOOL_OUTPUT_PLACEHOLDER}]
            else:
                replacement = TOOL_OUTPUT_PLACEHOLDER
            new_blocks.append({**block, "content": replacement})
            changed = True
        else:
            new_blocks.append(block)

    if not changed:
        return record
    redacted = {key: value for key, value in record.items() if key != TOOL_USE_RESULT_FIELD}
    redacted["message"] = {**record["message"], "content": new_blocks}
    return redacted


class Scrubber(ABC):
    """Transforms transcript bytes before they are stored."""

    @abstractmethod
    def scrub(self, content: bytes) -> bytes:
        """Return the scrubbed transcript."""


class NoopScrubber(Scrubber):
    """Pass-through scrubber used when scrubbing is disabled."""

    def scrub(self, content: bytes) -> bytes:
        return content


class ScrubPipeline(Scrubber):
    """Node removal, tool-output redaction and pattern redaction over JSONL.

    Args:
        recognizers: Ordered PII recognizers (default: built-in set)
        redact_tools: Tool names whose results are blanked
        node_rules: Top-level fields to drop
    """

    def __init__(
        self,
        recognizers: Sequence[Recognizer] | None = None,
        redact_tools: Iterable[str] = DEFAULT_REDACTED_TOOLS,
        node_rules: Sequence[NodeRemovalRule] = DEFAULT_NODE_RULES,
    ):
        self.recognizers = tuple(recognizers) if recognizers is not None else DEFAULT_RECOGNIZERS
        self.redact_tools = frozenset(redact_tools)
        self.node_rules = tuple(node_rules)

    def scrub(self, content: bytes) -> bytes:
        text = content.decode("utf-8", errors="replace")
        return "\n".join(self.scrub_lines(text.split("\n"))).encode("utf-8")

    def scrub_text(self, text: str) -> str:
        return scrub_text(text, self.recognizers)

    def scrub_lines(self, lines: list[str]) -> list[str]:
        """Scrub a transcript given as a list of lines.

        Blank lines are kept as they are. Lines that are not JSON objects
        are scrubbed as plain text.
        """
        originals = [self._parse(number, line) for number, line in enumerate(lines, start=1)]

        # Stage 1
        records = [self._remove_nodes(r) if r is not None else None for r in originals]

        # Stage 2: the index covers every record before any result is rewritten
        index = build_tool_use_index(records, self.redact_tools)
        if index:
            logger.debug("Redacting output of %d tool invocations", len(index))
        records = [redact_tool_results(r, index) if r is not None else None for r in records]

        # Stage 3
        output = []
        for line, original, record in zip(lines, originals, records, strict=True):
            if original is None:
                output.append(self.scrub_text(line) if line.strip() else line)
                continue
            scrubbed = scrub_value(record, self.recognizers)
            output.append(line if scrubbed == original else dump_record(scrubbed))
        return output

    def _parse(self, number: int, line: str) -> dict[str, Any] | None:
        if not line.strip():
            return None
        try:
            value = json.loads(line)
        except json.JSONDecodeError as e:
            error = TranscriptParseError(number, e.msg)
        else:
            if isinstance(value, dict):
                return value
            error = TranscriptParseError(number, f"expected an object, got {type(value).__name__}")
        logger.warning("%s; scrubbing as plain text", error.message)
        return None

    def _remove_nodes(self, record: dict[str, Any]) -> dict[str, Any]:
        for rule in self.node_rules:
            record = rule.apply(record)
        return record


def build_scrubber(
    enabled: bool = True,
    custom_patterns_file: Path | None = None,
    redact_tools: Iterable[str] = DEFAULT_REDACTED_TOOLS,
) -> Scrubber:
    """Create the scrubber for a run.

    Raises:
        ConfigError: If the custom pattern file is invalid
    """
    if not enabled:
        logger.info("Transcript scrubbing disabled")
        return NoopScrubber()
    return ScrubPipeline(
        recognizers=build_recognizers(custom_patterns_file),
        redact_tools=redact_tools,
    )
