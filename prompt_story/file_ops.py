"""
Local file operations.

Used for state that lives outside the object store (the ban list, local
session copies):
- Atomic writes using temp file + rename
- Line-by-line reading of JSONL session files
"""

import json
import os
import tempfile
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from .exceptions import ObjectStoreError


def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ObjectStoreError("create_directory", str(path), e) from e


def read_json(path: Path) -> dict[str, Any] | None:
    """Read a JSON file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON data or None if file doesn't exist
    """
    try:
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8")
        return json.loads(content) if content.strip() else None
    except json.JSONDecodeError as e:
        raise ObjectStoreError("parse_json", str(path), e) from e
    except OSError as e:
        raise ObjectStoreError("read_json", str(path), e) from e


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON file atomically using temp file + rename.

    Args:
        path: Target path for JSON file
        data: Data to serialize as JSON
    """
    write_bytes_atomic(
        path,
        (json.dumps(data, indent=2, default=_json_serializer) + "\n").encode("utf-8"),
        suffix=".json",
    )


def write_bytes_atomic(path: Path, content: bytes, suffix: str = ".tmp") -> None:
    """Replace a file's content atomically.

    Args:
        path: Target path
        content: New file content
        suffix: Suffix for the temporary file
    """
    ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except Exception as e:
        # Clean up temp file on error
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise ObjectStoreError("write_file", str(path), e) from e


def iter_lines(path: Path) -> Iterator[str]:
    """Iterate over non-empty lines of a text file without loading it all.

    Args:
        path: Path to a JSONL file

    Yields:
        Lines with trailing whitespace stripped
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.rstrip()
                if line:
                    yield line
    except OSError as e:
        raise ObjectStoreError("read_lines", str(path), e) from e


def read_first_line(path: Path) -> str | None:
    """Return the first non-empty line of a file, or None if there is none."""
    for line in iter_lines(path):
        return line
    return None


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for types not handled by default."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
