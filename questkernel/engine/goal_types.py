"""Dynamic boss goal metadata: one entry per metric kind.

Each GoalTypeDefinition describes how a real-world metric is presented and
which quest is generated when a boss asks for an auto-generated cadence
quest.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GoalTypeDefinition:
    metric: str
    label: str
    unit: str
    default_stats: tuple[str, ...]
    quest_suffix: str  # Appended to "<boss>: <Cadence> "
    quest_tracking: str = "manual"  # TrackingKind value of the generated quest
    description_template: str = "Reach {amount} this {cadence}."


GOAL_TYPES: dict[str, GoalTypeDefinition] = {
    "weight": GoalTypeDefinition(
        metric="weight",
        label="Weight",
        unit="lb",
        default_stats=("VIT", "WIL"),
        quest_suffix="Weight Progress",
        description_template="Move at least {amount} toward your weight goal this {cadence}.",
    ),
    "body_fat": GoalTypeDefinition(
        metric="body_fat",
        label="Body Fat",
        unit="%",
        default_stats=("VIT", "STR"),
        quest_suffix="Body Fat Progress",
        description_template="Reduce body fat by {amount} this {cadence}.",
    ),
    "savings": GoalTypeDefinition(
        metric="savings",
        label="Savings",
        unit="$",
        default_stats=("WIL", "INT"),
        quest_suffix="Savings Deposit",
        description_template="Deposit at least {amount} this {cadence} to damage the savings boss.",
    ),
    "workout_consistency": GoalTypeDefinition(
        metric="workout_consistency",
        label="Workout Consistency",
        unit="workouts",
        default_stats=("STR", "AGI", "VIT"),
        quest_suffix="Workout Count",
        quest_tracking="health",
        description_template="Complete at least {amount} this {cadence} to damage this boss.",
    ),
    "screen_time_discipline": GoalTypeDefinition(
        metric="screen_time_discipline",
        label="Screen Time Discipline",
        unit="minutes",
        default_stats=("WIL", "SPI"),
        quest_suffix="Screen Discipline",
        description_template="Keep social media usage under {amount} this {cadence}.",
    ),
}


def get_goal_type(metric: str) -> GoalTypeDefinition | None:
    return GOAL_TYPES.get(metric)


def list_goal_types() -> list[GoalTypeDefinition]:
    return list(GOAL_TYPES.values())


def format_goal_amount(value: float, unit: str) -> str:
    """Human-readable amount, e.g. "$250", "3 workouts", "1.5lb"."""
    if unit == "$":
        return f"${value:.0f}"
    if float(value).is_integer():
        return f"{int(value)} {unit}" if len(unit) > 2 else f"{int(value)}{unit}"
    return f"{value:.1f} {unit}" if len(unit) > 2 else f"{value:.1f}{unit}"
