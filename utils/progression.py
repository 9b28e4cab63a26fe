"""
Progression Math

Pure calculators behind levels, multipliers and compounding "units".
Nothing here touches the table store; orchestrators in check_ins,
achievements and trade_journal feed these functions persisted state.
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

BASE_LEVEL_XP = 100
LEVEL_GROWTH = 1.5

# Step function thresholds: (streak below, multiplier)
STREAK_TIERS = (
    (3, 1.0),
    (7, 1.1),
    (14, 1.25),
    (30, 1.5),
    (60, 2.0),
    (90, 2.5),
)
MAX_STREAK_MULTIPLIER = 3.0

LEVEL_BONUS_PER_LEVEL = 0.05

RARITY_MULTIPLIERS = {
    "common": 1.02,
    "rare": 1.05,
    "epic": 1.1,
    "legendary": 1.2,
}
DEFAULT_RARITY_MULTIPLIER = RARITY_MULTIPLIERS["common"]

# Absorbs float noise in log ratios, e.g. 1000 * 1.08 ** 2 landing at 1.9999999.
_UNIT_EPSILON = 1e-9


class InvalidGoalError(ValueError):
    """Raised when goal inputs cannot describe a compounding target."""


@dataclass(frozen=True)
class LevelInfo:
    level: int
    current_level_xp: float
    next_level_xp: int
    progress_percent: float

    @property
    def xp_to_next_level(self) -> float:
        return max(self.next_level_xp - self.current_level_xp, 0)


def level_requirement(level: int) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    return math.floor(BASE_LEVEL_XP * LEVEL_GROWTH ** (level - 1))


def level_from_xp(xp: float) -> LevelInfo:
    if xp < 0:
        raise ValueError(f"experience cannot be negative (got {xp})")

    level = 1
    total_needed = 0
    next_level_xp = BASE_LEVEL_XP

    while xp >= total_needed + next_level_xp:
        total_needed += next_level_xp
        level += 1
        next_level_xp = level_requirement(level)

    current = xp - total_needed
    return LevelInfo(
        level=level,
        current_level_xp=current,
        next_level_xp=next_level_xp,
        progress_percent=current / next_level_xp * 100,
    )


def streak_multiplier(streak_days: int) -> float:
    if streak_days < 0:
        raise ValueError(f"streak cannot be negative (got {streak_days})")
    for upper, multiplier in STREAK_TIERS:
        if streak_days < upper:
            return multiplier
    return MAX_STREAK_MULTIPLIER


def level_bonus(level: int) -> float:
    if level < 0:
        raise ValueError(f"level cannot be negative (got {level})")
    return 1.0 + level * LEVEL_BONUS_PER_LEVEL


AchievementLike = Union[Mapping[str, Any], Any]


def bonus_multiplier_for(achievement: AchievementLike) -> float:
    """Explicit bonus_multiplier when present, otherwise derived from rarity."""
    if isinstance(achievement, Mapping):
        explicit = achievement.get("bonus_multiplier")
        rarity = achievement.get("rarity")
    else:
        explicit = getattr(achievement, "bonus_multiplier", None)
        rarity = getattr(achievement, "rarity", None)

    if explicit is not None:
        if explicit < 0:
            raise ValueError(f"bonus multiplier cannot be negative (got {explicit})")
        return float(explicit)
    return RARITY_MULTIPLIERS.get((rarity or "common").lower(), DEFAULT_RARITY_MULTIPLIER)


def achievement_bonus(unlocked: Iterable[AchievementLike]) -> float:
    bonus = 1.0
    for achievement in unlocked:
        bonus *= bonus_multiplier_for(achievement)
    return bonus


def total_growth_multiplier(
    base: float,
    streak: int,
    level: int,
    achievements: Iterable[AchievementLike],
) -> float:
    if base < 0:
        raise ValueError(f"base progress cannot be negative (got {base})")
    return base * streak_multiplier(streak) * level_bonus(level) * achievement_bonus(achievements)


def _validate_goal(starting_capital: float, target_percent_per_unit: float) -> None:
    if starting_capital is None or starting_capital <= 0:
        raise InvalidGoalError("starting capital must be greater than zero")
    if target_percent_per_unit is None or target_percent_per_unit <= 0:
        raise InvalidGoalError("target percent per unit must be greater than zero")


def units_completed(
    starting_capital: float,
    current_capital: float,
    target_percent_per_unit: float,
    total_units: Optional[int] = None,
) -> int:
    """
    Number of compounding steps of ``target_percent_per_unit`` contained in the
    growth from ``starting_capital`` to ``current_capital``.

    Clamped to ``[0, total_units]`` (no upper clamp when ``total_units`` is None).
    """
    _validate_goal(starting_capital, target_percent_per_unit)
    if total_units is not None and total_units < 0:
        raise InvalidGoalError("total units cannot be negative")

    ratio = current_capital / starting_capital
    if ratio <= 0:
        return 0

    raw = math.log(ratio) / math.log(1 + target_percent_per_unit / 100)
    units = max(math.floor(raw + _UNIT_EPSILON), 0)
    if total_units is not None:
        units = min(units, total_units)
    return units


def projected_balance(starting_capital: float, target_percent_per_unit: float, total_units: int) -> float:
    """Balance after every unit compounds at the target percent."""
    _validate_goal(starting_capital, target_percent_per_unit)
    return starting_capital * (1 + target_percent_per_unit / 100) ** total_units
