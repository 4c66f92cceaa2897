"""Security utilities for secret redaction and path containment.

This module implements fail-closed security patterns. Redaction failures
block the operation instead of letting potentially sensitive text through,
and a path that cannot be proven to stay inside the watched root is rejected
before any file is touched.
"""

from __future__ import annotations

import os
import re
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING

import structlog

from .async_helpers import FixPilotError, PathEscapeError

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()


class SecurityError(FixPilotError):
    """Base exception for security-related errors."""


class RedactionError(SecurityError):
    """Raised when secret redaction fails."""


class SecretRedactor:
    """Detects and redacts secrets from text.

    Source files and error messages are sent to an external model, so every
    prompt goes through this redactor first. If any pattern fails to compile
    or execute, it raises instead of returning unredacted text.

    Usage:
        redactor = SecretRedactor()
        safe_text = redactor.redact(potentially_sensitive_text)
    """

    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        (
            r"(?i)(api[_-]?key|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        (r"ghp_[a-zA-Z0-9]{36}", "GitHub PAT"),
        (r"github_pat_[a-zA-Z0-9_]{22,}", "GitHub fine-grained PAT"),
        (r"sk-proj-[a-zA-Z0-9]{20,}", "OpenAI project API key"),
        (r"sk-ant-[\w-]{40,}", "Anthropic API key"),
        (r"AIza[0-9A-Za-z\-_]{35}", "Google API key"),
        (r"AKIA[0-9A-Z]{16}", "AWS access key ID"),
        (
            r"(?i)(postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis|amqp)://[^:]+:[^@]+@[^\s]+",
            "Database connection string",
        ),
        (
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----",
            "Private key header",
        ),
        (
            r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*",
            "JWT token",
        ),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Initialize the SecretRedactor.

        Args:
            placeholder: String to replace detected secrets with.
            custom_patterns: Additional (pattern, name) tuples to detect.

        Raises:
            RedactionError: If any pattern fails to compile.
        """
        self.placeholder = placeholder
        self._pattern_names: dict[re.Pattern[str], str] = {}

        all_patterns = list(self.DEFAULT_PATTERNS)
        if custom_patterns:
            all_patterns.extend(custom_patterns)

        for pattern_str, name in all_patterns:
            try:
                compiled = re.compile(pattern_str)
            except re.error as e:
                log.error("pattern_compilation_failed", pattern=pattern_str, error=str(e))
                raise RedactionError(f"Failed to compile secret pattern '{pattern_str}': {e}") from e
            self._pattern_names[compiled] = name

    def redact(self, text: str) -> str:
        """Redact all secrets from the given text.

        Raises:
            RedactionError: If redaction fails for any reason.
        """
        if not text:
            return text

        try:
            result = text
            for pattern in self._pattern_names:
                result = pattern.sub(self.placeholder, result)
            return result
        except Exception as e:
            log.error("redaction_failed", error=str(e))
            raise RedactionError(f"Redaction failed: {e}") from e


def resolve_within_root(root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` against ``root`` and prove it stays inside.

    Symlinks are resolved on both sides, so a link inside the root that points
    outside of it is rejected just like a ``..`` traversal.

    Args:
        root: The watched root directory.
        relative_path: Path relative to the root, as reported by the watcher.

    Returns:
        The fully resolved absolute path.

    Raises:
        PathEscapeError: If the path is empty, absolute, or resolves outside
            the root.
    """
    if not relative_path or "\x00" in relative_path:
        raise PathEscapeError(f"Invalid path: {relative_path!r}", path=relative_path)

    if (
        PurePosixPath(relative_path).is_absolute()
        or PureWindowsPath(relative_path).is_absolute()
        or PureWindowsPath(relative_path).drive
    ):
        log.warning("absolute_path_rejected", path=relative_path)
        raise PathEscapeError(f"Absolute paths are not allowed: {relative_path}", path=relative_path)

    # Any parent traversal is refused outright, even when it would land back
    # inside the root (e.g. a root of "/").
    if ".." in PurePosixPath(relative_path.replace("\\", "/")).parts:
        log.warning("path_traversal_rejected", path=relative_path)
        raise PathEscapeError(f"Parent traversal is not allowed: {relative_path}", path=relative_path)

    resolved_root = Path(os.path.realpath(root))
    candidate = Path(os.path.realpath(resolved_root / relative_path))

    if candidate != resolved_root and resolved_root not in candidate.parents:
        log.warning(
            "path_escape_rejected",
            path=relative_path,
            root=str(resolved_root),
            resolved=str(candidate),
        )
        raise PathEscapeError(f"Path escapes watched root: {relative_path}", path=relative_path)

    return candidate


def sanitize_for_logging(text: str) -> str:
    """Remove ANSI escape codes and control characters from text.

    Checker output (e.g. ``node --check`` stderr) is shown on the dashboard,
    so colour codes and stray control characters are stripped first.
    """
    if not text:
        return text

    text = re.sub(r"\x1b\[[0-9;]*m", "", text)
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)

    return text
