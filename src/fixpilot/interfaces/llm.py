"""Abstract interface for AI assistance providers."""

from typing import Protocol

from ..models.error import DetectionInput, Environment, ErrorRecord


class AssistantProvider(Protocol):
    """Abstract interface for AI assistance integrations.

    This protocol defines the contract that the gateway relies on. Adapters
    (Anthropic, the offline fallback, test doubles) must implement it.
    """

    async def explain(self, record: ErrorRecord) -> str:
        """
        Explain an error in plain language.

        Fails open: when the provider cannot answer, a user-facing fallback
        string is returned instead of raising.

        Security: message, stack trace and snippet MUST be redacted by the
        adapter before they leave the process.

        Args:
            record: The error to explain

        Returns:
            Explanation text (never empty)
        """
        ...

    async def generate_patch(self, record: ErrorRecord, source_text: str) -> str:
        """
        Produce the full corrected content of ``record.file``.

        Any enclosing code-fence markup must be stripped before returning.

        Args:
            record: The error to fix (with its explanation)
            source_text: Current content of the broken file

        Returns:
            Complete replacement file content

        Raises:
            GatewayFailure: If no patch could be produced
        """
        ...

    async def simulate_error(self, environment: Environment) -> DetectionInput:
        """
        Invent a plausible error for demo and seed data.

        Never used for production detection. Falls back to a canned error
        when the provider is unavailable.

        Args:
            environment: Environment the fake error is tagged with

        Returns:
            A detection ready to be fed to the lifecycle manager
        """
        ...

    @property
    def model_name(self) -> str:
        """
        Return the model identifier being used.

        Examples:
            - "claude-3-5-sonnet-20241022"
            - "offline"
        """
        ...
