"""Engine state and result contract: Pydantic v2 models."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from questkernel.engine import formulas
from questkernel.engine.ranks import RankDefinition, rank_for_level

STAT_CAP = 999
DEFAULT_PLAYER_HP = 100
DEFAULT_BOSS_HP = 10000


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StatKind(str, Enum):
    STR = "STR"
    INT = "INT"
    AGI = "AGI"
    VIT = "VIT"
    WIL = "WIL"
    SPI = "SPI"


class Difficulty(str, Enum):
    trivial = "trivial"
    easy = "easy"
    normal = "normal"
    hard = "hard"
    extreme = "extreme"
    legendary = "legendary"


class QuestStatus(str, Enum):
    available = "available"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"  # time-boxed focus sessions only
    expired = "expired"


class TrackingKind(str, Enum):
    manual = "manual"
    health = "health"
    screen_time = "screen_time"
    location = "location"
    timer = "timer"

    @property
    def is_automatic(self) -> bool:
        return self in (TrackingKind.health, TrackingKind.screen_time, TrackingKind.location)


class Recurrence(str, Enum):
    hourly = "hourly"
    daily = "daily"
    semi_weekly = "semi_weekly"
    weekly = "weekly"
    monthly = "monthly"


class GoalCadence(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"

    @property
    def recurrence(self) -> Recurrence:
        return Recurrence(self.value)

    @property
    def label(self) -> str:
        return self.value.capitalize()


class MetricKind(str, Enum):
    weight = "weight"
    body_fat = "body_fat"
    savings = "savings"
    workout_consistency = "workout_consistency"
    screen_time_discipline = "screen_time_discipline"


class ActivityKind(str, Enum):
    quest_created = "quest_created"
    quest_deleted = "quest_deleted"
    quest_progress = "quest_progress"
    quest_completed = "quest_completed"
    quest_reset = "quest_reset"
    completion_undone = "completion_undone"
    boss_created = "boss_created"
    micro_task_added = "micro_task_added"
    boss_damaged = "boss_damaged"
    goal_updated = "goal_updated"
    boss_defeated = "boss_defeated"
    reward_consumed = "reward_consumed"
    streak_extended = "streak_extended"
    penalty_applied = "penalty_applied"
    penalty_completed = "penalty_completed"
    player_defeated = "player_defeated"


class EventKind(str, Enum):
    quest_completed = "quest_completed"
    level_up = "level_up"
    rank_up = "rank_up"
    boss_defeated = "boss_defeated"
    day_evaluated = "day_evaluated"
    player_defeated = "player_defeated"


class LootRarity(str, Enum):
    common = "common"
    rare = "rare"
    epic = "epic"
    legendary = "legendary"


class LootItemKind(str, Enum):
    gold = "gold"
    bonus_xp = "bonus_xp"
    shadow_soldier = "shadow_soldier"
    title = "title"
    stat_boost = "stat_boost"


class PenaltyType(str, Enum):
    physical = "physical"
    social = "social"
    restriction = "restriction"


# ---------------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------------


class Stat(BaseModel):
    kind: StatKind
    base_value: int = Field(default=0, ge=0)
    bonus_value: int = Field(default=0, ge=0)
    experience: int = Field(default=0, ge=0)  # 100 units == 1 stat point

    @property
    def total_value(self) -> int:
        return min(self.base_value + self.bonus_value, STAT_CAP)

    @property
    def points(self) -> int:
        return self.experience // 100

    @property
    def progress_to_next_point(self) -> float:
        return (self.experience % 100) / 100.0


def default_stats() -> dict[StatKind, Stat]:
    return {kind: Stat(kind=kind) for kind in StatKind}


class ShadowSoldier(BaseModel):
    """Collectible extracted from a defeated boss."""

    id: str = Field(default_factory=_new_id)
    name: str
    rank: str = "elite"  # "elite" | "knight"
    source_boss_id: str | None = None
    acquired_at: datetime = Field(default_factory=_utcnow)


class LootItem(BaseModel):
    kind: LootItemKind
    amount: int = 0
    name: str | None = None  # soldier name or title
    rank: str | None = None  # soldier rank
    stat: StatKind | None = None

    @property
    def label(self) -> str:
        if self.kind == LootItemKind.gold:
            return f"{self.amount} Gold"
        if self.kind == LootItemKind.bonus_xp:
            return f"{self.amount} Bonus XP"
        if self.kind == LootItemKind.shadow_soldier:
            return f"Shadow Soldier: {self.name}"
        if self.kind == LootItemKind.title:
            return f"Title: {self.name}"
        return f"+{self.amount} {self.stat.value if self.stat else ''}".rstrip()


class LootBox(BaseModel):
    """Dropped by a critical quest completion; contents are rolled on drop."""

    id: str = Field(default_factory=_new_id)
    rarity: LootRarity = LootRarity.common
    contents: list[LootItem] = Field(default_factory=list)
    source_quest_id: str | None = None
    obtained_at: datetime = Field(default_factory=_utcnow)


class PenaltyQuest(BaseModel):
    """Redemption task issued on a penalty. Expires after a day."""

    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    penalty_type: PenaltyType = PenaltyType.physical
    reason: str = ""
    is_completed: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class Player(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str = "Hunter"
    title: str = "Awakened"
    level: int = 1
    current_xp: int = 0  # cumulative; thresholds come from xp_required(level)
    total_xp: int = 0
    gold: int = 0
    stats: dict[StatKind, Stat] = Field(default_factory=default_stats)
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: date | None = None
    current_hp: int = DEFAULT_PLAYER_HP
    max_hp: int = DEFAULT_PLAYER_HP
    penalty_count: int = 0
    in_penalty_zone: bool = False
    pending_missed: int = 0  # required windows missed since the last day evaluation
    unlocked_titles: list[str] = Field(default_factory=lambda: ["Awakened"])
    shadow_soldiers: list[ShadowSoldier] = Field(default_factory=list)
    pending_loot_boxes: list[LootBox] = Field(default_factory=list)
    active_penalties: list[PenaltyQuest] = Field(default_factory=list)
    completed_quest_count: int = 0
    defeated_boss_count: int = 0

    @model_validator(mode="after")
    def _clamp_vitals(self) -> Player:
        self.level = max(self.level, 1)
        self.max_hp = max(self.max_hp, 1)
        self.current_hp = min(max(self.current_hp, 0), self.max_hp)
        self.current_xp = max(self.current_xp, 0)
        self.gold = max(self.gold, 0)
        for kind in StatKind:
            self.stats.setdefault(kind, Stat(kind=kind))
        return self

    @property
    def rank(self) -> RankDefinition:
        return rank_for_level(self.level)

    @property
    def xp_required_for_next_level(self) -> int:
        return formulas.xp_required(self.level + 1)

    @property
    def xp_progress(self) -> float:
        floor_xp = formulas.xp_required(self.level) if self.level > 1 else 0
        span = self.xp_required_for_next_level - floor_xp
        if span <= 0:
            return 1.0
        return formulas.clamp_unit((self.current_xp - floor_xp) / span)

    @property
    def hp_progress(self) -> float:
        if self.max_hp <= 0:
            return 0.0
        return formulas.clamp_unit(self.current_hp / self.max_hp)

    @property
    def total_stat_points(self) -> int:
        return sum(stat.total_value for stat in self.stats.values())

    @property
    def power_level(self) -> int:
        return self.total_stat_points * self.level // 10


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    difficulty: Difficulty = Difficulty.normal
    status: QuestStatus = QuestStatus.available
    target_stats: list[StatKind] = Field(default_factory=list)
    tracking: TrackingKind = TrackingKind.manual
    recurrence: Recurrence = Recurrence.daily
    current_value: float = 0.0
    target_value: float = 1.0  # 0 means binary: any positive signal completes
    unit: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    completed_at: datetime | None = None
    linked_boss_id: str | None = None
    required: bool | None = None  # None: required when recurrence is daily

    @property
    def is_required(self) -> bool:
        if self.required is not None:
            return self.required
        return self.recurrence == Recurrence.daily

    @property
    def progress(self) -> float:
        if self.status == QuestStatus.completed:
            return 1.0
        if self.target_value <= 0:
            return 1.0 if self.current_value > 0 else 0.0
        return formulas.clamp_unit(self.current_value / self.target_value)

    @property
    def xp_reward(self) -> int:
        return formulas.quest_xp(self.difficulty)

    @property
    def gold_reward(self) -> int:
        return formulas.quest_gold(self.difficulty)


# ---------------------------------------------------------------------------
# Bosses
# ---------------------------------------------------------------------------


class MicroTask(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    difficulty: Difficulty = Difficulty.normal
    is_completed: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class DynamicBossGoal(BaseModel):
    metric: MetricKind
    start_value: float
    target_value: float
    current_value: float
    cadence: GoalCadence = GoalCadence.weekly
    per_cadence_target: float = 1.0
    generated_quest_id: str | None = None
    last_updated_at: datetime | None = None

    @property
    def normalized_progress(self) -> float:
        return formulas.normalized_goal_progress(self.start_value, self.target_value, self.current_value)

    @property
    def remaining_amount(self) -> float:
        """Distance still to cover, measured in the goal's direction."""
        if self.target_value >= self.start_value:
            return max(0.0, self.target_value - self.current_value)
        return max(0.0, self.current_value - self.target_value)

    @property
    def is_increasing(self) -> bool:
        return self.target_value >= self.start_value


class BossFight(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    difficulty: Difficulty = Difficulty.normal
    target_stats: list[StatKind] = Field(default_factory=list)
    max_hp: int = DEFAULT_BOSS_HP
    current_hp: int = DEFAULT_BOSS_HP
    status: QuestStatus = QuestStatus.available
    micro_tasks: list[MicroTask] = Field(default_factory=list)
    linked_quest_ids: list[str] = Field(default_factory=list)
    dynamic_goal: DynamicBossGoal | None = None
    deadline: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_damage_dealt: int = 0
    total_damage_dealt: int = 0
    rewards_claimed: bool = False
    defeated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_current_hp(cls, data: Any) -> Any:
        if isinstance(data, dict) and "current_hp" not in data and "max_hp" in data:
            data = {**data, "current_hp": data["max_hp"]}
        return data

    @model_validator(mode="after")
    def _clamp_hp(self) -> BossFight:
        self.max_hp = max(self.max_hp, 1)
        self.current_hp = min(max(self.current_hp, 0), self.max_hp)
        if self.current_hp == 0:
            self.status = QuestStatus.completed
        return self

    @property
    def is_dynamic(self) -> bool:
        return self.dynamic_goal is not None

    @property
    def is_defeated(self) -> bool:
        return self.current_hp == 0

    @property
    def remaining_hp(self) -> int:
        return self.current_hp

    @property
    def hp_percentage(self) -> float:
        return formulas.clamp_unit(self.current_hp / self.max_hp)

    @property
    def damage_dealt_percentage(self) -> float:
        return 1.0 - self.hp_percentage

    @property
    def xp_reward(self) -> int:
        return formulas.boss_xp(self.difficulty)

    @property
    def gold_reward(self) -> int:
        return formulas.boss_gold(self.difficulty)


# ---------------------------------------------------------------------------
# Activity log & events
# ---------------------------------------------------------------------------


class ActivityLogEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    kind: ActivityKind
    title: str
    detail: str = ""
    timestamp: datetime


class EngineEvent(BaseModel):
    kind: EventKind
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class DamageResult(BaseModel):
    boss_id: str | None = None
    damage: int = 0
    is_critical: bool = False
    boss_defeated: bool = False
    current_hp: int = 0


class StatGain(BaseModel):
    kind: StatKind
    amount: int


class LevelUpEvent(BaseModel):
    previous_level: int
    new_level: int
    previous_rank: str
    new_rank: str

    @property
    def rank_up(self) -> bool:
        return self.previous_rank != self.new_rank


class BossRewardSummary(BaseModel):
    boss_id: str
    xp_awarded: int
    gold_awarded: int
    stat_gains: list[StatGain] = Field(default_factory=list)
    soldier: ShadowSoldier | None = None


class RewardSummary(BaseModel):
    quest_id: str
    xp_awarded: int
    gold_awarded: int
    streak_multiplier: float = 1.0
    stat_gains: list[StatGain] = Field(default_factory=list)
    level_up: LevelUpEvent | None = None
    boss_result: DamageResult | None = None
    boss_rewards: BossRewardSummary | None = None
    is_critical: bool = False
    loot_box: LootBox | None = None


class LootOpening(BaseModel):
    box_id: str
    rarity: LootRarity
    items: list[LootItem] = Field(default_factory=list)
    level_up: LevelUpEvent | None = None


class PenaltyRedemption(BaseModel):
    penalty_id: str
    xp_awarded: int
    gold_awarded: int
    exited_penalty_zone: bool = False
    level_up: LevelUpEvent | None = None


class ProgressOutcome(BaseModel):
    target_id: str
    target_kind: str  # "quest" | "boss"
    progress: float
    completed: bool = False
    reward: RewardSummary | None = None
    damage: DamageResult | None = None


class StatLoss(BaseModel):
    kind: StatKind
    previous_value: int
    new_value: int
    lost: int


class DefeatSummary(BaseModel):
    """Notification payload describing a player defeat. Inert."""

    missed_quest_count: int
    previous_level: int
    new_level: int
    previous_rank: str
    new_rank: str
    was_demoted: bool
    gold_lost: int
    gold_remaining: int
    stat_loss_percent: float
    stat_losses: list[StatLoss] = Field(default_factory=list)


class DayEvaluation(BaseModel):
    evaluated_date: date
    days_elapsed: int = 1
    required_count: int = 0
    completed_count: int = 0
    missed_count: int = 0
    streak_extended: bool = False
    current_streak: int = 0
    hp_damage: int = 0
    defeat: DefeatSummary | None = None
    penalty: PenaltyQuest | None = None


# ---------------------------------------------------------------------------
# Companion snapshot (read-only)
# ---------------------------------------------------------------------------


class QuestSnapshotItem(BaseModel):
    id: str
    title: str
    subtitle: str = ""
    status: QuestStatus
    tracking: TrackingKind
    progress: float
    target_value: float
    unit: str = ""
    xp_reward: int
    gold_reward: int


class CompanionSnapshot(BaseModel):
    generated_at: datetime
    player_name: str
    level: int
    rank: str
    current_xp: int
    xp_required_for_next_level: int
    gold: int
    current_hp: int
    max_hp: int
    current_streak: int = 0
    completed_today: int = 0
    total_quests: int = 0
    quests: list[QuestSnapshotItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class QuestCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    difficulty: Difficulty = Difficulty.normal
    target_stats: list[StatKind] = Field(default_factory=list)
    tracking: TrackingKind = TrackingKind.manual
    recurrence: Recurrence = Recurrence.daily
    target_value: float = Field(default=1.0, ge=0)
    unit: str = ""
    linked_boss_id: str | None = None
    required: bool | None = None


class DynamicGoalCreate(BaseModel):
    metric: MetricKind
    start_value: float
    target_value: float
    current_value: float | None = None
    cadence: GoalCadence = GoalCadence.weekly
    per_cadence_target: float = Field(default=1.0, gt=0)


class BossCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    difficulty: Difficulty = Difficulty.hard
    target_stats: list[StatKind] = Field(default_factory=list)
    max_hp: int = Field(default=DEFAULT_BOSS_HP, ge=1)
    linked_quest_ids: list[str] = Field(default_factory=list)
    dynamic_goal: DynamicGoalCreate | None = None
    auto_generate_goal_quest: bool = False
    deadline: datetime | None = None


class MicroTaskCreate(BaseModel):
    title: str = Field(min_length=1)
    difficulty: Difficulty = Difficulty.normal


class ProgressReport(BaseModel):
    target_id: str
    value: float
    at: datetime | None = None
    source: TrackingKind | None = None


class GoalValueUpdate(BaseModel):
    value: float


class RewardRedemption(BaseModel):
    title: str = Field(min_length=1)
    cost: int = Field(ge=0)
