"""Pluggable syntax verification keyed by file extension.

``Verifier.verify`` never raises for malformed content: a parse failure is
the negative result. Files without a registered checker pass (skip, not
fail).
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

import structlog

from fixpilot.config.schema import VerifierConfig
from fixpilot.interfaces.verifier import SyntaxChecker
from fixpilot.models.verification import VerificationResult
from fixpilot.utils.safe_subprocess import (
    BinaryNotFoundError,
    CommandError,
    CommandTimeoutError,
    SafeCommandRunner,
)
from fixpilot.utils.security import sanitize_for_logging

log = structlog.get_logger()


def _suffix(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).suffix.lower()


class PythonChecker:
    """Compile Python source in-process without executing it."""

    name = "python"
    extensions = (".py",)

    def check(self, path: str, content: str) -> VerificationResult:
        try:
            compile(content, path, "exec", dont_inherit=True)
        except SyntaxError as e:
            return VerificationResult.failed(f"{type(e).__name__}: {e.msg}", e.lineno)
        except ValueError as e:
            # Raised for source containing NUL bytes
            return VerificationResult.failed(f"SyntaxError: {e}")
        return VerificationResult.passed()


class JsonChecker:
    """Parse JSON documents."""

    name = "json"
    extensions = (".json",)

    def check(self, path: str, content: str) -> VerificationResult:
        try:
            json.loads(content)
        except json.JSONDecodeError as e:
            return VerificationResult.failed(f"SyntaxError: {e.msg}", e.lineno)
        return VerificationResult.passed()


class NodeChecker:
    """Run ``node --check`` on a temporary copy of the content.

    The copy keeps the original suffix so node picks the right module
    system for ``.mjs`` and ``.cjs`` files. If node is not installed every
    check passes and a warning is logged once.
    """

    name = "node"
    extensions = (".js", ".jsx", ".mjs", ".cjs")

    _LOCATION_RE = re.compile(r":(\d+)\s*$")

    def __init__(self, runner: SafeCommandRunner | None, timeout: int = 10) -> None:
        self._runner = runner
        self._timeout = timeout
        self._warned = False

    @classmethod
    def from_config(cls, config: VerifierConfig) -> NodeChecker:
        """Locate node (or use ``config.node_path``) and build a checker."""
        try:
            runner: SafeCommandRunner | None = SafeCommandRunner(
                "node", binary_path=config.node_path, default_timeout=config.timeout
            )
        except BinaryNotFoundError:
            runner = None
        return cls(runner, timeout=config.timeout)

    def check(self, path: str, content: str) -> VerificationResult:
        if self._runner is None:
            if not self._warned:
                log.warning("node_not_found", path=path, hint="JavaScript checks are skipped")
                self._warned = True
            return VerificationResult.passed()

        fd, temp_name = tempfile.mkstemp(prefix="fixpilot-check-", suffix=_suffix(path))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            try:
                result = self._runner.run(["--check", temp_name], timeout=self._timeout)
            except CommandTimeoutError:
                return VerificationResult.failed(f"Syntax check timed out after {self._timeout}s")
            except CommandError as e:
                return VerificationResult.failed(f"Syntax check could not run: {e}")
        finally:
            Path(temp_name).unlink(missing_ok=True)

        if result.success:
            return VerificationResult.passed()
        return self._parse_failure(sanitize_for_logging(result.stderr), temp_name)

    def _parse_failure(self, stderr: str, temp_name: str) -> VerificationResult:
        lines = stderr.splitlines()
        message = next(
            (line.strip() for line in lines if "SyntaxError" in line),
            "Syntax Error Detected",
        )
        line_number = None
        for line in lines:
            if temp_name in line:
                match = self._LOCATION_RE.search(line)
                if match:
                    line_number = int(match.group(1))
                break
        return VerificationResult.failed(message, line_number)


class Verifier:
    """Registry of syntax checkers keyed by extension.

    Example:
        verifier = Verifier.from_config(config.verifier)
        result = verifier.verify("src/app.py", source)
        if not result.ok:
            print(result.message, result.line)
    """

    def __init__(self, checkers: Iterable[SyntaxChecker] = ()) -> None:
        self._checkers: dict[str, SyntaxChecker] = {}
        for checker in checkers:
            self.register(checker)

    @classmethod
    def from_config(cls, config: VerifierConfig) -> Verifier:
        """Build a verifier with the built-in Python, JSON and node checkers."""
        return cls([PythonChecker(), JsonChecker(), NodeChecker.from_config(config)])

    def register(self, checker: SyntaxChecker) -> None:
        """Register ``checker`` for its extensions, replacing any earlier one."""
        for extension in checker.extensions:
            self._checkers[extension.lower()] = checker

    def checker_for(self, path: str) -> SyntaxChecker | None:
        """Return the checker for ``path``, or None if it is not checked."""
        return self._checkers.get(_suffix(path))

    def verify(self, path: str, content: str) -> VerificationResult:
        """Check ``content`` as the source of ``path``.

        Blocking; run it with ``asyncio.to_thread`` from async code.
        """
        checker = self.checker_for(path)
        if checker is None:
            return VerificationResult.passed()

        try:
            result = checker.check(path, content)
        except Exception as e:
            log.error("checker_crashed", checker=checker.name, path=path, error=str(e))
            return VerificationResult.failed(f"{checker.name} checker crashed: {e}")

        log.debug("file_verified", checker=checker.name, path=path, ok=result.ok)
        return result
