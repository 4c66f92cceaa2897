"""Data models for syntax verification results."""

from dataclasses import dataclass


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking one file.

    A failed parse is a normal negative result, never an exception.
    """

    ok: bool
    message: str | None = None
    line: int | None = None

    @classmethod
    def passed(cls) -> "VerificationResult":
        """Result for a file that passed (or was skipped)."""
        return cls(ok=True)

    @classmethod
    def failed(cls, message: str, line: int | None = None) -> "VerificationResult":
        """Result for a file that did not pass its check."""
        return cls(ok=False, message=message, line=line)
