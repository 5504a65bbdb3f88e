"""
Configuration.

Settings are layered, later sources winning:

1. Built-in defaults
2. ``<git-dir>/prompt-story/config.yaml``
3. ``PROMPT_STORY_*`` environment variables

Example config.yaml:

```yaml
scrub_enabled: true
custom_patterns_file: patterns.yaml   # relative to this file
redact_tool_outputs: [Read]
remote: origin
```
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from .banned import default_ban_list_path
from .exceptions import ConfigError
from .notes import LEGACY_NOTES_REF, NOTES_REF
from .scrub import DEFAULT_REDACTED_TOOLS
from .transcripts import TRANSCRIPTS_REF

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = "prompt-story"
CONFIG_FILENAME = "config.yaml"
ENV_PREFIX = "PROMPT_STORY_"

_FALSE_VALUES = {"0", "false", "no", "off"}
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: Any, name: str, source: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(name, f"expected a boolean, got {value!r}", source)


def _parse_list(value: Any, name: str, source: str) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ConfigError(name, f"expected a list of strings, got {value!r}", source)


def _parse_float(value: Any, name: str, source: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(name, f"expected a number, got {value!r}", source) from e
    if number <= 0:
        raise ConfigError(name, "must be positive", source)
    return number


def _parse_path(value: Any, name: str, source: str, base: Path | None) -> Path | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str | os.PathLike):
        raise ConfigError(name, f"expected a path, got {value!r}", source)
    path = Path(value).expanduser()
    if base is not None and not path.is_absolute():
        path = base / path
    return path


def _parse_str(value: Any, name: str, source: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(name, f"expected a non-empty string, got {value!r}", source)
    return value


@dataclass
class PromptStoryConfig:
    """Runtime settings for prompt-story."""

    notes_ref: str = NOTES_REF
    legacy_notes_ref: str | None = LEGACY_NOTES_REF
    transcripts_ref: str = TRANSCRIPTS_REF
    scrub_enabled: bool = True
    custom_patterns_file: Path | None = None
    redact_tool_outputs: list[str] = field(default_factory=lambda: list(DEFAULT_REDACTED_TOOLS))
    remote: str = "origin"
    claude_projects_dir: Path | None = None
    cursor_db_path: Path | None = None
    ban_list_path: Path | None = None
    redact_tolerance_seconds: float = 1.0

    @property
    def redact_tolerance(self) -> timedelta:
        return timedelta(seconds=self.redact_tolerance_seconds)

    def merge(self, values: Mapping[str, Any], source: str, base: Path | None = None) -> PromptStoryConfig:
        """
        Return a copy with ``values`` applied.

        Args:
            values: Setting name to raw value
            source: Where the values came from, for error messages
            base: Directory relative paths are resolved against

        Raises:
            ConfigError: On unknown settings or invalid values
        """
        known = {f.name for f in fields(self)}
        updates: dict[str, Any] = {}
        for name, value in values.items():
            if name not in known:
                raise ConfigError(name, "unknown setting", source)
            if name == "scrub_enabled":
                updates[name] = _parse_bool(value, name, source)
            elif name == "redact_tool_outputs":
                updates[name] = _parse_list(value, name, source)
            elif name == "redact_tolerance_seconds":
                updates[name] = _parse_float(value, name, source)
            elif name in ("custom_patterns_file", "claude_projects_dir", "cursor_db_path", "ban_list_path"):
                updates[name] = _parse_path(value, name, source, base)
            elif name == "legacy_notes_ref":
                updates[name] = value or None
            else:
                updates[name] = _parse_str(value, name, source)
        return replace(self, **updates)

    @classmethod
    def from_file(cls, path: Path, base: PromptStoryConfig | None = None) -> PromptStoryConfig:
        """Apply a YAML config file on top of ``base`` (default: built-in defaults)."""
        config = base or cls()
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError("config_file", f"cannot read: {e}", str(path)) from e
        except yaml.YAMLError as e:
            raise ConfigError("config_file", f"invalid YAML: {e}", str(path)) from e
        if data is None:
            return config
        if not isinstance(data, dict):
            raise ConfigError("config_file", "expected a mapping", str(path))
        logger.debug("Loaded config from %s", path)
        return config.merge(data, str(path), base=path.parent)

    @classmethod
    def from_environment(
        cls, base: PromptStoryConfig | None = None, environ: Mapping[str, str] | None = None
    ) -> PromptStoryConfig:
        """Apply ``PROMPT_STORY_<SETTING>`` environment variables on top of ``base``."""
        config = base or cls()
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key in env:
                values[f.name] = env[key]
        return config.merge(values, "environment") if values else config

    @classmethod
    def load(
        cls, git_dir: Path | None = None, environ: Mapping[str, str] | None = None
    ) -> PromptStoryConfig:
        """Defaults, then the repository config file (if any), then the environment."""
        config = cls()
        if git_dir is not None:
            path = git_dir / CONFIG_DIRNAME / CONFIG_FILENAME
            if path.is_file():
                config = cls.from_file(path, config)
        config = cls.from_environment(config, environ)
        if config.ban_list_path is None and git_dir is not None:
            config = replace(config, ban_list_path=default_ban_list_path(git_dir))
        return config
