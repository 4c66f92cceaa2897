"""Data models for derived project statistics."""

from dataclasses import dataclass
from enum import Enum

MAX_HEALTH = 100
MIN_HEALTH = 0


class StatsEventKind(Enum):
    """Lifecycle transitions that move the project statistics."""

    DETECT = "DETECT"
    APPLY = "APPLY"
    ROLLBACK = "ROLLBACK"


@dataclass(frozen=True)
class StatsEvent:
    """One entry of the transition journal the statistics are derived from."""

    kind: StatsEventKind
    record_id: str
    health_delta: int


@dataclass(frozen=True)
class ProjectStats:
    """Aggregate health of the watched project.

    Never mutated directly; every value is produced by replaying
    :class:`StatsEvent` entries through ``fixpilot.core.stats``.
    """

    health_score: int = MAX_HEALTH
    total_errors: int = 0
    fixed_errors: int = 0
    active_patches: int = 0
