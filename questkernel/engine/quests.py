"""Quest lifecycle: status transitions and calendar-aligned recurrence.

All functions mutate the quest they are given in place and return a plain
value describing what happened. Times are timezone-aware; naive datetimes
are treated as UTC.
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from questkernel.engine.errors import ErrorKind, Result, invalid_state
from questkernel.engine.models import (
    Difficulty,
    Quest,
    QuestStatus,
    Recurrence,
    StatKind,
    TrackingKind,
)

logger = logging.getLogger(__name__)

_RESET_DAYS = {
    Recurrence.daily: 1,
    Recurrence.semi_weekly: 3,
    Recurrence.weekly: 7,
}


def as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def zone_for(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def local_date(at: datetime, tz: str | ZoneInfo) -> date:
    return as_aware(at).astimezone(zone_for(tz)).date()


def local_midnight(day: date, tz: str | ZoneInfo) -> datetime:
    return datetime.combine(day, time(0), tzinfo=zone_for(tz))


def next_reset(recurrence: Recurrence, reference: datetime, tz: str | ZoneInfo = "UTC") -> datetime:
    """Next reset boundary strictly after `reference`, aligned to the local calendar.

    hourly -> top of the next hour; daily -> next local midnight;
    semi-weekly/weekly -> local midnight 3/7 days after the reference day;
    monthly -> same day next month (clamped to month length) at local midnight.
    """
    zone = zone_for(tz)
    local = as_aware(reference).astimezone(zone)

    if recurrence == Recurrence.hourly:
        hour_start = local.replace(minute=0, second=0, microsecond=0)
        return (hour_start.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(zone)

    if recurrence == Recurrence.monthly:
        year = local.year + (1 if local.month == 12 else 0)
        month = 1 if local.month == 12 else local.month + 1
        day = min(local.day, calendar.monthrange(year, month)[1])
        return local_midnight(date(year, month, day), zone)

    days = _RESET_DAYS[recurrence]
    return local_midnight(local.date() + timedelta(days=days), zone)


def create_quest(
    title: str,
    *,
    now: datetime,
    tz: str | ZoneInfo = "UTC",
    description: str = "",
    difficulty: Difficulty = Difficulty.normal,
    target_stats: list[StatKind] | None = None,
    tracking: TrackingKind = TrackingKind.manual,
    recurrence: Recurrence = Recurrence.daily,
    target_value: float = 1.0,
    unit: str = "",
    linked_boss_id: str | None = None,
    required: bool | None = None,
    quest_id: str | None = None,
) -> Quest:
    """Build a quest whose first window closes at the next reset boundary."""
    now = as_aware(now)
    fields = dict(
        title=title,
        description=description,
        difficulty=difficulty,
        target_stats=list(target_stats or []),
        tracking=tracking,
        recurrence=recurrence,
        target_value=max(float(target_value), 0.0),
        unit=unit,
        created_at=now,
        expires_at=next_reset(recurrence, now, tz),
        linked_boss_id=linked_boss_id,
        required=required,
    )
    if quest_id is not None:
        fields["id"] = quest_id
    return Quest(**fields)


def effective_status(quest: Quest, now: datetime) -> QuestStatus:
    """Stored status, except a quest past its window reads as expired."""
    if as_aware(now) > as_aware(quest.expires_at):
        return QuestStatus.expired
    return quest.status


def sanitize_value(value: float, target_value: float) -> tuple[float, bool]:
    """Map a raw metric value onto [0, target]. Returns (value, was_clamped).

    NaN and negatives become 0. +inf becomes the target, or 1 when the
    target is 0 so a binary quest still sees a positive signal.
    """
    if math.isnan(value):
        return 0.0, True
    if math.isinf(value):
        if value < 0:
            return 0.0, True
        return (target_value if target_value > 0 else 1.0), True
    if value < 0:
        return 0.0, True
    if target_value > 0 and value > target_value:
        return target_value, False
    return float(value), False


def update_progress(quest: Quest, value: float, at: datetime) -> Result[float]:
    """Record a new raw progress value; returns the normalized progress.

    Completed or expired quests are left untouched (no-op failure). Out of
    range values are clamped, never rejected.
    """
    status = effective_status(quest, at)
    if status in (QuestStatus.completed, QuestStatus.expired, QuestStatus.failed):
        logger.warning(f"Ignoring progress for quest {quest.id}: status is {status.value}")
        return invalid_state(f"Quest {quest.id} is {status.value}")

    sanitized, clamped = sanitize_value(value, quest.target_value)
    if clamped:
        logger.warning(
            f"{ErrorKind.out_of_range.value}: quest {quest.id} progress {value!r} clamped to {sanitized}"
        )

    quest.current_value = sanitized
    if quest.status == QuestStatus.available and sanitized > 0:
        quest.status = QuestStatus.in_progress
    return Result.success(quest.progress)


def check_completion(quest: Quest, at: datetime) -> bool:
    """Flip to completed the instant progress reaches 1.0.

    Returns True only on the transition; calling it again is a no-op.
    """
    if quest.status == QuestStatus.completed:
        return False
    if effective_status(quest, at) == QuestStatus.expired:
        return False
    if quest.progress < 1.0:
        return False
    quest.status = QuestStatus.completed
    quest.completed_at = as_aware(at)
    if quest.target_value > 0:
        quest.current_value = quest.target_value
    return True


def mark_completed(quest: Quest, at: datetime) -> Result[Quest]:
    """Manual completion: force progress to full and flip the edge."""
    status = effective_status(quest, at)
    if status == QuestStatus.completed:
        return invalid_state(f"Quest {quest.id} already completed")
    if status in (QuestStatus.expired, QuestStatus.failed):
        return invalid_state(f"Quest {quest.id} is {status.value}")
    quest.current_value = quest.target_value if quest.target_value > 0 else 1.0
    check_completion(quest, at)
    return Result.success(quest)


@dataclass(frozen=True, slots=True)
class Rollover:
    windows_elapsed: int = 0
    missed_windows: int = 0

    @property
    def rolled(self) -> bool:
        return self.windows_elapsed > 0


def roll_over(quest: Quest, now: datetime, tz: str | ZoneInfo = "UTC") -> Rollover:
    """Advance the quest into the window containing `now`.

    Every elapsed window the quest did not complete counts as missed. The
    expiry only ever moves forward.
    """
    now = as_aware(now)
    elapsed = 0
    missed = 0
    while now >= as_aware(quest.expires_at):
        if quest.status != QuestStatus.completed:
            missed += 1
        quest.status = QuestStatus.available
        quest.current_value = 0.0
        quest.completed_at = None
        quest.expires_at = next_reset(quest.recurrence, quest.expires_at, tz)
        elapsed += 1
    return Rollover(windows_elapsed=elapsed, missed_windows=missed)


def reset_window(quest: Quest, now: datetime, tz: str | ZoneInfo = "UTC") -> None:
    """Manually restart the quest's current window from `now`."""
    quest.status = QuestStatus.available
    quest.current_value = 0.0
    quest.completed_at = None
    candidate = next_reset(quest.recurrence, now, tz)
    if candidate > as_aware(quest.expires_at):
        quest.expires_at = candidate
