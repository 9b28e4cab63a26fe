from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

OPTION_CONTRACT_MULTIPLIER = 100


class Record(BaseModel):
    """Base for rows read from the table store; unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Trade(Record):
    id: Optional[str] = None
    user_id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    trade_type: Literal["stock", "call", "put"] = "stock"
    direction: Literal["long", "short"]
    entry_price: float
    exit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    target_price: Optional[float] = None
    strike_price: Optional[float] = None
    expiry_date: Optional[date] = None
    position_size: float = Field(..., gt=0)
    status: Literal["open", "closed"] = "open"
    notes: Optional[str] = None
    emotions: List[str] = Field(default_factory=list)
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _exit_price_matches_status(self) -> "Trade":
        if self.status == "closed" and self.exit_price is None:
            raise ValueError("exit_price is required for a closed trade")
        if self.status == "open" and self.exit_price is not None:
            raise ValueError("exit_price is only allowed on a closed trade")
        return self

    @property
    def is_option(self) -> bool:
        return self.trade_type in ("call", "put")

    @property
    def executed_at(self) -> Optional[datetime]:
        """Explicit entry time when present, otherwise the creation time."""
        return self.entry_time or self.created_at

    def pnl(self) -> float:
        if self.status != "closed" or self.exit_price is None:
            return 0.0
        multiplier = OPTION_CONTRACT_MULTIPLIER if self.is_option else 1
        sign = -1 if self.direction == "short" else 1
        return (self.exit_price - self.entry_price) * self.position_size * multiplier * sign


class TradingRule(Record):
    id: Optional[str] = None
    user_id: str = Field(..., min_length=1)
    rule_text: str = Field(..., alias="rule", min_length=1)
    category: Optional[str] = None
    is_active: bool = True
    times_followed: int = 0
    times_violated: int = 0


class RuleViolation(Record):
    id: Optional[str] = None
    rule_id: str
    trade_id: str
    user_id: str
    notes: str
    violated_at: Optional[datetime] = None


class UserProgress(Record):
    user_id: str = Field(..., min_length=1)
    streak: int = 0
    longest_streak: int = 0
    discipline_score: float = 0.0
    level: int = 1
    experience: int = 0
    next_level_xp: int = 100
    total_check_ins: int = 0
    last_check_in_date: Optional[date] = None
    streak_multiplier: float = 1.0
    level_bonus: float = 1.05
    achievement_bonus: float = 1.0
    units_cracked: int = 0
    units_spilled: int = 0
    total_stars: int = 0
    version: int = 0


class UserGoal(Record):
    id: Optional[str] = None
    user_id: str = Field(..., min_length=1)
    starting_capital: float = Field(..., gt=0)
    current_capital: float
    target_percent_per_unit: float = Field(..., gt=0)
    total_units: int = Field(..., ge=0)
    units_remaining: int = 0
    units_cracked: int = 0
    units_rewarded: int = 0
    units_spilled: int = 0
    max_loss_percent: Optional[float] = None
    is_active: bool = True


class Achievement(Record):
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    rarity: Optional[str] = "common"
    requirement_type: str
    requirement_value: float
    star_reward: int = 0
    xp_reward: int = 0
    bonus_multiplier: Optional[float] = None
    is_active: bool = True


class UserAchievement(Record):
    user_id: str
    achievement_id: str
    unlocked_at: Optional[datetime] = None


class DailyCheckIn(Record):
    user_id: str
    check_in_date: date
    discipline_rating: int = Field(..., ge=0, le=10)
    followed_rules: bool = True
    traded_today: bool = False
    trades_count: int = 0
    win_rate: Optional[float] = None
    profit_loss: Optional[float] = None
    notes: Optional[str] = None
    emotions: List[str] = Field(default_factory=list)
    xp_earned: int = 0
    streak_at_time: int = 0


class Notification(Record):
    user_id: str
    type: str
    title: str
    message: str
    icon: str = "🔔"
    action_url: Optional[str] = None
    metadata: Optional[dict] = None
    is_read: bool = False


__all__ = [
    "OPTION_CONTRACT_MULTIPLIER",
    "Trade",
    "TradingRule",
    "RuleViolation",
    "UserProgress",
    "UserGoal",
    "Achievement",
    "UserAchievement",
    "DailyCheckIn",
    "Notification",
]
