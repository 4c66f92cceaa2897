"""Canned responses shared by the AI assistance adapters."""

from __future__ import annotations

import re

from ...models.error import DetectionInput, Environment, ErrorSeverity, StackFrame

FALLBACK_EXPLANATION = (
    "FixPilot AI is unavailable right now, so no explanation could be generated. "
    "Check the API key and network connection, then retry the analysis."
)

_FENCE_OPEN_RE = re.compile(r"^\s*```[\w+-]*[ \t]*\n")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove one enclosing Markdown code fence, if present.

    Example:
        >>> strip_code_fences("```js\\nconst a = 1;\\n```")
        'const a = 1;'
    """
    match = _FENCE_OPEN_RE.match(text)
    if match is None:
        return text.strip()
    return _FENCE_CLOSE_RE.sub("", text[match.end() :], count=1).strip()


def fallback_error(environment: Environment) -> DetectionInput:
    """A fixed, realistic error used when no model can invent one."""
    if environment is Environment.PRODUCTION:
        return DetectionInput(
            message="ConnectionTimeoutError: Database pool connection limit reached",
            file="src/infrastructure/db.ts",
            severity=ErrorSeverity.CRITICAL,
            environment=environment,
            language="typescript",
            stack_trace=(StackFrame("src/infrastructure/db.ts", 45, 12, "acquireConnection"),),
            source_snippet=(
                "const pool = new Pool({ max: 10, idleTimeoutMillis: 1000 });\n"
                "// High traffic caused pool exhaustion"
            ),
        )
    return DetectionInput(
        message="ReferenceError: process is not defined",
        file="src/utils/config.ts",
        severity=ErrorSeverity.HIGH,
        environment=environment,
        language="typescript",
        stack_trace=(StackFrame("src/utils/config.ts", 5, 12, "getConfig"),),
        source_snippet="export const getConfig = () => {\n  return process.env.API_URL;\n}",
    )
