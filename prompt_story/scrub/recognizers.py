"""
PII recognizers for transcript scrubbing.

A recognizer is a named set of regular expressions with one replacement.
Recognizers are applied in list order to every string in a transcript
record, so more specific formats must come before the generic catch-alls
they overlap with (a credentialed database URL before the email pattern,
provider-specific keys before the generic API key pattern). Replacement
text is chosen so that no later recognizer matches it again.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recognizer:
    """A named PII pattern with its replacement.

    ``replacement`` follows ``re.sub`` template rules, so group references
    such as ``\\1`` are allowed.
    """

    name: str
    entity_type: str
    patterns: tuple[re.Pattern, ...]
    replacement: str

    @classmethod
    def compile(
        cls, name: str, entity_type: str, regexes: list[str], replacement: str
    ) -> Recognizer:
        try:
            compiled = tuple(re.compile(r) for r in regexes)
        except re.error as e:
            raise ConfigError(f"recognizer {name}", f"invalid regex: {e}") from e
        return cls(name=name, entity_type=entity_type, patterns=compiled, replacement=replacement)

    def apply(self, text: str) -> str:
        for pattern in self.patterns:
            text = pattern.sub(self.replacement, text)
        return text


def _r(name: str, entity_type: str, regexes: list[str], replacement: str) -> Recognizer:
    return Recognizer.compile(name, entity_type, regexes, replacement)


DEFAULT_RECOGNIZERS: tuple[Recognizer, ...] = (
    _r(
        "private_key",
        "PRIVATE_KEY",
        [
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----[\s\S]*?"
            r"(?:-----END (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----|\Z)"
        ],
        "<PRIVATE_KEY>",
    ),
    # Before email: "user:pass@db.host.com" looks like an address
    _r(
        "database_url",
        "DATABASE_URL",
        [
            r"\b(postgres(?:ql)?|mysql|mariadb|mongodb(?:\+srv)?|rediss?|amqps?|mssql)"
            r"://[^\s:/@]*:[^\s@/]+@[^\s'\"<>]+"
        ],
        r"\1://<CREDENTIALS>@<HOST>",
    ),
    _r(
        "url_credentials",
        "URL_CREDENTIALS",
        [r"\b(https?|ftps?)://[^\s:/@]+:[^\s@/]+@"],
        r"\1://<CREDENTIALS>@",
    ),
    _r("unix_home_path", "USER_PATH", [r"/(?:Users|home)/[a-zA-Z0-9._-]+/"], "/<REDACTED>/"),
    _r(
        "windows_user_path",
        "USER_PATH",
        [r"([A-Za-z]):\\Users\\[a-zA-Z0-9._-]+\\"],
        r"\1:\\Users\\<REDACTED>\\",
    ),
    _r("email", "EMAIL", [r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"], "<EMAIL>"),
    _r(
        "credit_card",
        "CREDIT_CARD",
        [
            r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13}"
            r"|6(?:011|5[0-9]{2})[0-9]{12})\b"
        ],
        "<CREDIT_CARD>",
    ),
    _r("aws_access_key", "AWS_KEY", [r"AKIA[0-9A-Z]{16}"], "<AWS_ACCESS_KEY>"),
    _r(
        "aws_secret_key",
        "AWS_SECRET",
        [r"(?i)aws.{0,20}secret.{0,20}['\"][A-Za-z0-9/+=]{40}['\"]"],
        "<AWS_SECRET_KEY>",
    ),
    _r("anthropic_api_key", "ANTHROPIC_KEY", [r"sk-ant-[a-zA-Z0-9_-]{40,}"], "<ANTHROPIC_API_KEY>"),
    _r(
        "openrouter_api_key",
        "OPENROUTER_KEY",
        [r"sk-or-(?:v1-)?[a-zA-Z0-9]{32,}"],
        "<OPENROUTER_API_KEY>",
    ),
    _r(
        "openai_api_key",
        "OPENAI_KEY",
        [r"sk-proj-[a-zA-Z0-9_-]{40,}", r"sk-[a-zA-Z0-9]{48}"],
        "<OPENAI_API_KEY>",
    ),
    _r("google_api_key", "GOOGLE_KEY", [r"AIza[0-9A-Za-z_-]{35}"], "<GOOGLE_API_KEY>"),
    _r("github_token", "GITHUB_TOKEN", [r"gh[pousr]_[A-Za-z0-9_]{36,}"], "<GITHUB_TOKEN>"),
    _r("slack_token", "SLACK_TOKEN", [r"xox[baprs]-[0-9]+-[0-9]+-[a-zA-Z0-9]+"], "<SLACK_TOKEN>"),
    _r("stripe_key", "STRIPE_KEY", [r"\b(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{20,}"], "<STRIPE_KEY>"),
    _r(
        "discord_token",
        "DISCORD_TOKEN",
        [r"\b[MN][A-Za-z0-9_-]{23,25}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,38}"],
        "<DISCORD_TOKEN>",
    ),
    _r("npm_token", "NPM_TOKEN", [r"\bnpm_[A-Za-z0-9]{36,}"], "<NPM_TOKEN>"),
    _r(
        "sendgrid_key",
        "SENDGRID_KEY",
        [r"\bSG\.[A-Za-z0-9_-]{22}\.[A-Za-z0-9_-]{43}"],
        "<SENDGRID_KEY>",
    ),
    _r("twilio_key", "TWILIO_KEY", [r"\bSK[0-9a-fA-F]{32}\b"], "<TWILIO_KEY>"),
    _r(
        "bearer_token",
        "AUTH_TOKEN",
        [r"(?i)bearer\s+[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"],
        "Bearer <TOKEN>",
    ),
    _r("cookie", "COOKIE", [r"(?i)\b(set-cookie|cookie):[ \t]*[^\r\n]+"], r"\1: <COOKIE>"),
    _r(
        "secret_env_var",
        "SECRET",
        [r"\b([A-Z][A-Z0-9_]*(?:TOKEN|SECRET|API_KEY))=[\"']?[A-Za-z0-9_\-./+=]{16,}[\"']?"],
        r"\1=<SECRET>",
    ),
    # After the provider keys so they keep their specific replacement
    _r(
        "generic_api_key",
        "API_KEY",
        [
            r"(?i)(?<![A-Za-z0-9_])(?:api[_-]?key|api[_-]?secret|access[_-]?token|auth[_-]?token)"
            r"['\":\s=]+[a-zA-Z0-9_-]{20,}"
        ],
        "<API_KEY>",
    ),
    _r(
        "password_assignment",
        "PASSWORD",
        [r"(?i)(?:password|passwd|pwd)['\":\s=]+(?!<)[^\s'\"]{8,}"],
        "<PASSWORD>",
    ),
)


def scrub_text(text: str, recognizers: Sequence[Recognizer] = DEFAULT_RECOGNIZERS) -> str:
    """
    Apply every recognizer, in order, to a string.

    Args:
        text: Text to scrub
        recognizers: Ordered recognizers (default: built-in set)

    Returns:
        Scrubbed text
    """
    if not text or not isinstance(text, str):
        return text
    for recognizer in recognizers:
        text = recognizer.apply(text)
    return text


def scrub_value(value: Any, recognizers: Sequence[Recognizer] = DEFAULT_RECOGNIZERS) -> Any:
    """
    Recursively scrub string leaves of a decoded JSON value.

    Keys, numbers, booleans and nulls are left alone, so the result has the
    same shape as the input. Returns a new structure; the input is not
    modified.
    """
    if isinstance(value, str):
        return scrub_text(value, recognizers)
    if isinstance(value, dict):
        return {key: scrub_value(inner, recognizers) for key, inner in value.items()}
    if isinstance(value, list):
        return [scrub_value(item, recognizers) for item in value]
    return value


def load_recognizers(path: Path) -> list[Recognizer]:
    """Load custom recognizers from a YAML file.

    The file holds a list of recognizers (optionally under a top-level
    ``recognizers`` key)::

        - name: internal_host
          entity_type: HOSTNAME
          patterns:
            - regex: "[a-z0-9-]+\\.corp\\.example\\.com"
          replacement: "<INTERNAL_HOST>"

    Raises:
        ConfigError: If the file is unreadable or malformed
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError("custom_patterns_file", f"cannot read: {e}", str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigError("custom_patterns_file", f"invalid YAML: {e}", str(path)) from e

    if isinstance(data, dict):
        data = data.get("recognizers")
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError("custom_patterns_file", "expected a list of recognizers", str(path))

    recognizers = []
    for index, item in enumerate(data):
        if not isinstance(item, dict) or "replacement" not in item:
            raise ConfigError(
                "custom_patterns_file", f"recognizer #{index} needs a replacement", str(path)
            )
        regexes = [p["regex"] for p in item.get("patterns") or [] if isinstance(p, dict) and "regex" in p]
        if not regexes:
            raise ConfigError(
                "custom_patterns_file", f"recognizer #{index} has no patterns", str(path)
            )
        name = str(item.get("name") or f"custom_{index}")
        recognizers.append(
            Recognizer.compile(name, str(item.get("entity_type") or "CUSTOM"), regexes, str(item["replacement"]))
        )

    logger.debug("Loaded %d custom recognizers from %s", len(recognizers), path)
    return recognizers


def build_recognizers(custom_patterns_file: Path | None = None) -> list[Recognizer]:
    """Custom recognizers (if any) followed by the built-in set."""
    custom = load_recognizers(custom_patterns_file) if custom_patterns_file else []
    return [*custom, *DEFAULT_RECOGNIZERS]
