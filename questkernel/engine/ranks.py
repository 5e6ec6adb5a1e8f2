"""Static rank ladder: derived from level, never stored."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RankDefinition:
    code: str
    min_level: int
    title: str


RANKS: tuple[RankDefinition, ...] = (
    RankDefinition(code="E", min_level=1, title="Awakened"),
    RankDefinition(code="D", min_level=10, title="Novice Hunter"),
    RankDefinition(code="C", min_level=25, title="Hunter"),
    RankDefinition(code="B", min_level=50, title="Elite Hunter"),
    RankDefinition(code="A", min_level=75, title="Veteran Hunter"),
    RankDefinition(code="S", min_level=100, title="National Level Hunter"),
    RankDefinition(code="SS", min_level=150, title="Transcendent"),
    RankDefinition(code="SSS", min_level=200, title="Apex Predator"),
    RankDefinition(code="MONARCH", min_level=300, title="Shadow Monarch"),
)


def rank_for_level(level: int) -> RankDefinition:
    """Highest rank whose min_level is at or below `level`."""
    current = RANKS[0]
    for rank in RANKS:
        if rank.min_level <= level:
            current = rank
    return current


def rank_order(code: str) -> int:
    """Position of a rank on the ladder (E == 0). Unknown codes sort first."""
    for index, rank in enumerate(RANKS):
        if rank.code == code:
            return index
    return -1
