"""
Custom exceptions for prompt-story.

Hard errors are raised as these exceptions. Policy skips (note already
present, no sessions found) are not errors and are reported through
``lifecycle.Outcome`` instead.
"""


class PromptStoryError(Exception):
    """Base exception for all prompt-story errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CommitResolutionError(PromptStoryError):
    """Raised when a commit reference or range cannot be resolved."""

    def __init__(self, rev: str, reason: str | None = None):
        details = {"rev": rev}
        if reason:
            details["reason"] = reason
        message = f"Cannot resolve commit: {rev}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)
        self.rev = rev
        self.reason = reason


class ObjectStoreError(PromptStoryError):
    """Raised when an object store read or write fails."""

    def __init__(self, operation: str, target: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if target:
            details["target"] = target
        if cause:
            details["cause"] = str(cause)
        message = f"Object store error during {operation}"
        if target:
            message += f": {target}"
        if cause:
            message += f" ({cause})"
        super().__init__(message, details)
        self.operation = operation
        self.target = target
        self.cause = cause


class RefUpdateConflictError(ObjectStoreError):
    """Raised when a compare-and-set ref update loses a race."""

    def __init__(self, ref: str, expected: str | None, actual: str | None):
        super().__init__("update_ref", ref)
        self.message = (
            f"Ref {ref} moved during update: expected {expected or '(absent)'}, "
            f"found {actual or '(absent)'}"
        )
        self.args = (self.message,)
        self.details.update({"expected": expected, "actual": actual})
        self.ref = ref
        self.expected = expected
        self.actual = actual


class TranscriptParseError(PromptStoryError):
    """Raised when a transcript record cannot be parsed."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(
            f"Malformed transcript record at line {line_number}: {reason}",
            {"line_number": line_number, "reason": reason},
        )
        self.line_number = line_number
        self.reason = reason


class NotFoundError(PromptStoryError):
    """Base class for missing notes, transcripts and records."""


class NoteNotFoundError(NotFoundError):
    """Raised when a commit has no prompt-story note."""

    def __init__(self, commit: str):
        super().__init__(f"No prompt-story note for commit {commit[:7]}", {"commit": commit})
        self.commit = commit


class TranscriptNotFoundError(NotFoundError):
    """Raised when a session transcript is not in the transcript tree."""

    def __init__(self, tool: str, session_id: str):
        super().__init__(
            f"Transcript not found: {tool}/{session_id}",
            {"tool": tool, "session_id": session_id},
        )
        self.tool = tool
        self.session_id = session_id


class RecordNotFoundError(NotFoundError):
    """Raised when no transcript record matches a redaction timestamp."""

    def __init__(self, path: str, timestamp: str):
        super().__init__(
            f"No record at {timestamp} in {path}",
            {"path": path, "timestamp": timestamp},
        )
        self.path = path
        self.timestamp = timestamp


class ConfigError(PromptStoryError):
    """Raised when configuration or a custom pattern file is invalid."""

    def __init__(self, field: str, reason: str, source: str | None = None):
        details = {"field": field, "reason": reason}
        if source is not None:
            details["source"] = source
        super().__init__(f"Invalid configuration for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.source = source
