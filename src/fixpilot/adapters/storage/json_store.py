"""JSON file snapshot store.

The whole dashboard state lives in one JSON document keyed by a fixed
namespace::

    {"fixpilot": {"errors": [...], "logs": [...], "stats": {...}}}

Other namespaces in the same file are preserved on write.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

import structlog

log = structlog.get_logger()


class JsonStateStore:
    """Persist the state snapshot to a JSON file with atomic rewrites.

    A missing file loads as no state. A corrupt file also loads as no state,
    with a warning, so a damaged snapshot never keeps the dashboard from
    starting.
    """

    def __init__(self, path: Path, namespace: str = "fixpilot") -> None:
        self._path = Path(path)
        self._namespace = namespace
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any] | None:
        with self._lock:
            document = self._read_document()
        state = document.get(self._namespace)
        if state is None:
            return None
        if not isinstance(state, dict):
            log.warning("state_namespace_invalid", path=str(self._path), namespace=self._namespace)
            return None
        return state

    def save(self, state: dict[str, Any]) -> None:
        """Rewrite the file with ``state`` under the namespace.

        Raises:
            OSError: If the file could not be written.
        """
        with self._lock:
            document = self._read_document()
            document[self._namespace] = state
            self._write_document(document)

    def clear(self) -> None:
        with self._lock:
            document = self._read_document()
            if document.pop(self._namespace, None) is not None:
                self._write_document(document)

    def _read_document(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            log.warning("state_read_failed", path=str(self._path), error=str(e))
            return {}

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            log.warning("state_file_corrupt", path=str(self._path), error=str(e))
            return {}
        if not isinstance(document, dict):
            log.warning("state_file_corrupt", path=str(self._path), error="root is not an object")
            return {}
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: write to temp file, then rename
        fd, temp_name = tempfile.mkstemp(
            suffix=".tmp",
            prefix=f"{self._path.name}.",
            dir=self._path.parent,
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            temp_path.replace(self._path)
        except BaseException:
            # Clean up temp file on failure
            temp_path.unlink(missing_ok=True)
            raise

        log.debug("state_saved", path=str(self._path), namespace=self._namespace)
