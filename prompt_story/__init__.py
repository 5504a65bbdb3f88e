"""
prompt-story

Links LLM-assistant session transcripts to git commits without touching
commit history.

Provides:
- A content-addressed transcript tree under its own ref
- Per-commit notes listing the sessions behind each commit
- Privacy scrubbing before anything is hashed into the store
- Add, repair, remove, redact and ban lifecycle operations

Usage:

    >>> from prompt_story import GitObjectStore, PromptStory, PromptStoryConfig
    >>> store = GitObjectStore()
    >>> engine = PromptStory(store, PromptStoryConfig.load(store.git_dir()))
    >>> outcome = engine.add("HEAD")
    >>> outcome.status
    <OutcomeStatus.APPLIED: 'applied'>
"""

from .banned import BanList, BannedSession
from .config import PromptStoryConfig
from .discovery import ClaudeCodeDiscoverer, LocalSession, SessionDiscoverer, find_sessions
from .exceptions import (
    CommitResolutionError,
    ConfigError,
    NoteNotFoundError,
    NotFoundError,
    ObjectStoreError,
    PromptStoryError,
    RecordNotFoundError,
    RefUpdateConflictError,
    TranscriptNotFoundError,
    TranscriptParseError,
)
from .lifecycle import BatchReport, Outcome, OutcomeStatus, PromptStory, run_batch
from .notes import Note, NoteStore, SessionEntry, derive_work_period, merge_notes, work_period
from .redaction import RedactionTarget, redact_content
from .rewrite import transfer_notes
from .scrub import ScrubPipeline, build_scrubber
from .store import GitObjectStore, MemoryObjectStore, ObjectStore
from .transcripts import TranscriptTree

__version__ = "0.1.0"

__all__ = [
    "BanList",
    "BannedSession",
    "BatchReport",
    "ClaudeCodeDiscoverer",
    "CommitResolutionError",
    "ConfigError",
    "GitObjectStore",
    "LocalSession",
    "MemoryObjectStore",
    "Note",
    "NoteNotFoundError",
    "NoteStore",
    "NotFoundError",
    "ObjectStore",
    "ObjectStoreError",
    "Outcome",
    "OutcomeStatus",
    "PromptStory",
    "PromptStoryConfig",
    "PromptStoryError",
    "RecordNotFoundError",
    "RedactionTarget",
    "RefUpdateConflictError",
    "ScrubPipeline",
    "SessionDiscoverer",
    "SessionEntry",
    "TranscriptNotFoundError",
    "TranscriptParseError",
    "TranscriptTree",
    "build_scrubber",
    "derive_work_period",
    "find_sessions",
    "merge_notes",
    "redact_content",
    "run_batch",
    "transfer_notes",
    "work_period",
]
