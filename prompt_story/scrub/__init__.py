"""
Privacy scrubbing for transcripts.

Transcripts are scrubbed before they are hashed into the object store, so
secrets never reach a shared ref.
"""

from .pipeline import (
    DEFAULT_NODE_RULES,
    DEFAULT_REDACTED_TOOLS,
    TOOL_OUTPUT_PLACEHOLDER,
    NodeRemovalRule,
    NoopScrubber,
    ScrubPipeline,
    Scrubber,
    build_scrubber,
    build_tool_use_index,
    dump_record,
    redact_tool_results,
)
from .recognizers import (
    DEFAULT_RECOGNIZERS,
    Recognizer,
    build_recognizers,
    load_recognizers,
    scrub_text,
    scrub_value,
)

__all__ = [
    "DEFAULT_NODE_RULES",
    "DEFAULT_RECOGNIZERS",
    "DEFAULT_REDACTED_TOOLS",
    "TOOL_OUTPUT_PLACEHOLDER",
    "NodeRemovalRule",
    "NoopScrubber",
    "Recognizer",
    "ScrubPipeline",
    "Scrubber",
    "build_recognizers",
    "build_scrubber",
    "build_tool_use_index",
    "dump_record",
    "load_recognizers",
    "redact_tool_results",
    "scrub_text",
    "scrub_value",
]
