"""
Resolve a point total to a level and to progress toward the next level.
Pure functions: thresholds are always passed in, never read from a global.
"""

from classpoint.core.enums import LEVEL_ORDER, Level

from .schemas import LevelProgress, LevelThresholds


def level_for(points: int, thresholds: LevelThresholds) -> Level:
    """Highest level whose threshold is <= points."""
    for level in reversed(LEVEL_ORDER):
        if points >= thresholds.threshold(level):
            return level
    return Level.HAT


def progress(points: int, level: Level, thresholds: LevelThresholds) -> LevelProgress:
    """
    Progress from the current level's threshold to the next one.

    At the top level there is nothing left to earn: 100%, 0 points needed.
    `level` is taken as given (usually the cached student level), so a stale
    level can yield current < 0 or percentage < 0 until the next balance change.
    """
    level = Level(level)
    next_level = level.next()
    if next_level is None:
        return LevelProgress(current=0, span=100, percentage=100.0, points_needed=0)

    current_threshold = thresholds.threshold(level)
    next_threshold = thresholds.threshold(next_level)
    current = points - current_threshold
    span = next_threshold - current_threshold
    percentage = min(100.0, current * 100.0 / span)
    return LevelProgress(
        current=current,
        span=span,
        percentage=percentage,
        points_needed=next_threshold - points,
    )
