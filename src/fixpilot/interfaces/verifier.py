"""Abstract interface for per-language syntax checkers."""

from typing import Protocol

from ..models.verification import VerificationResult


class SyntaxChecker(Protocol):
    """A syntax check for one family of file extensions.

    Implementations must not raise for malformed content. A parse failure
    is returned as ``VerificationResult.failed(...)``.
    """

    @property
    def name(self) -> str:
        """Short checker name used in logs (e.g. "python", "node")."""
        ...

    @property
    def extensions(self) -> tuple[str, ...]:
        """Lower-case file suffixes handled by this checker, with the dot."""
        ...

    def check(self, path: str, content: str) -> VerificationResult:
        """
        Check ``content`` as the source of ``path``.

        Blocking; callers run it off the event loop.

        Args:
            path: Path of the file, used for messages and suffix-specific rules
            content: File content to check

        Returns:
            Passed or failed result with message and optional line
        """
        ...
