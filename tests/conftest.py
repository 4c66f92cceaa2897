"""Shared test fixtures for FixPilot."""

from __future__ import annotations

from pathlib import Path

import pytest

from fixpilot.adapters.patch import LocalPatchWriter
from fixpilot.adapters.storage import MemoryStateStore
from fixpilot.core.lifecycle import ErrorLifecycleManager
from fixpilot.core.patch_applier import PatchApplier
from fixpilot.models.error import DetectionInput, Environment, ErrorSeverity

from .fakes import BROKEN_JS, make_clock


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A watched project root holding one broken JavaScript file."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.js").write_text(BROKEN_JS)
    return root


@pytest.fixture
def applier(project: Path) -> PatchApplier:
    return PatchApplier(project)


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def manager(applier: PatchApplier, store: MemoryStateStore) -> ErrorLifecycleManager:
    """Lifecycle manager writing patches into the ``project`` fixture."""
    return ErrorLifecycleManager(writer=LocalPatchWriter(applier), store=store, clock=make_clock())


@pytest.fixture
def local_error() -> DetectionInput:
    return DetectionInput(
        message="SyntaxError: Unexpected end of input",
        file="src/app.js",
        severity=ErrorSeverity.HIGH,
        environment=Environment.LOCAL,
        source_snippet=BROKEN_JS,
    )


@pytest.fixture
def production_error() -> DetectionInput:
    return DetectionInput(
        message="ConnectionTimeoutError: Database pool connection limit reached",
        file="src/infrastructure/db.ts",
        severity=ErrorSeverity.CRITICAL,
        environment=Environment.PRODUCTION,
    )
