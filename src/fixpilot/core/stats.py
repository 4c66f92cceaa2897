"""Project statistics derived from the lifecycle transition journal.

Statistics are never stored independently of the journal: every value is
the result of folding :class:`StatsEvent` entries over the initial stats, so
any snapshot can be reproduced by replay.
"""

from __future__ import annotations

from collections.abc import Iterable

from fixpilot.config.schema import LifecycleConfig
from fixpilot.models.error import Environment
from fixpilot.models.stats import (
    MAX_HEALTH,
    MIN_HEALTH,
    ProjectStats,
    StatsEvent,
    StatsEventKind,
)


def clamp_health(value: int) -> int:
    """Clamp a health score to the valid range."""
    return max(MIN_HEALTH, min(MAX_HEALTH, value))


def detect_penalty(environment: Environment, config: LifecycleConfig) -> int:
    """Health lost when an error is detected in ``environment``."""
    if environment is Environment.PRODUCTION:
        return config.detect_penalty_production
    return config.detect_penalty_local


def granted_recovery(stats: ProjectStats, recovery: int) -> int:
    """Recovery actually gained after clamping at the maximum health."""
    return clamp_health(stats.health_score + recovery) - stats.health_score


def apply_event(stats: ProjectStats, event: StatsEvent) -> ProjectStats:
    """Return the stats after one transition.

    ``health_delta`` is signed: negative for detections and rollbacks,
    positive for applied fixes. The result is clamped after every delta.
    """
    health = clamp_health(stats.health_score + event.health_delta)

    if event.kind is StatsEventKind.DETECT:
        return ProjectStats(
            health_score=health,
            total_errors=stats.total_errors + 1,
            fixed_errors=stats.fixed_errors,
            active_patches=stats.active_patches,
        )
    if event.kind is StatsEventKind.APPLY:
        return ProjectStats(
            health_score=health,
            total_errors=stats.total_errors,
            fixed_errors=stats.fixed_errors + 1,
            active_patches=stats.active_patches + 1,
        )
    return ProjectStats(
        health_score=health,
        total_errors=stats.total_errors,
        fixed_errors=max(0, stats.fixed_errors - 1),
        active_patches=max(0, stats.active_patches - 1),
    )


def replay(
    events: Iterable[StatsEvent],
    initial: ProjectStats | None = None,
) -> ProjectStats:
    """Fold a transition journal into stats."""
    stats = initial if initial is not None else ProjectStats()
    for event in events:
        stats = apply_event(stats, event)
    return stats
