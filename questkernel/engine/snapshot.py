"""Companion snapshot builder: read-only view for remote displays.

The snapshot is a versionless JSON document. Quests are listed incomplete
first, then alphabetically by title.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo

from questkernel.engine.models import (
    CompanionSnapshot,
    Player,
    Quest,
    QuestSnapshotItem,
    QuestStatus,
)
from questkernel.engine.quests import as_aware, effective_status, local_date


def _subtitle(quest: Quest) -> str:
    if quest.target_value > 0 and quest.unit:
        current = f"{quest.current_value:g}" if quest.status != QuestStatus.completed else f"{quest.target_value:g}"
        return f"{current}/{quest.target_value:g} {quest.unit}"
    return quest.recurrence.value.replace("_", "-").capitalize()


def quest_item(quest: Quest, now: datetime) -> QuestSnapshotItem:
    return QuestSnapshotItem(
        id=quest.id,
        title=quest.title,
        subtitle=_subtitle(quest),
        status=effective_status(quest, now),
        tracking=quest.tracking,
        progress=quest.progress,
        target_value=quest.target_value,
        unit=quest.unit,
        xp_reward=quest.xp_reward,
        gold_reward=quest.gold_reward,
    )


def build_snapshot(
    player: Player,
    quests: Iterable[Quest],
    now: datetime,
    tz: str | ZoneInfo = "UTC",
) -> CompanionSnapshot:
    now = as_aware(now)
    today = local_date(now, tz)
    quests = list(quests)
    items = [quest_item(q, now) for q in quests]
    items.sort(key=lambda item: (item.status == QuestStatus.completed, item.title.lower()))

    completed_today = sum(
        1
        for q in quests
        if q.status == QuestStatus.completed and q.completed_at is not None and local_date(q.completed_at, tz) == today
    )

    return CompanionSnapshot(
        generated_at=now,
        player_name=player.name,
        level=player.level,
        rank=player.rank.code,
        current_xp=player.current_xp,
        xp_required_for_next_level=player.xp_required_for_next_level,
        gold=player.gold,
        current_hp=player.current_hp,
        max_hp=player.max_hp,
        current_streak=player.current_streak,
        completed_today=completed_today,
        total_quests=len(items),
        quests=items,
    )
