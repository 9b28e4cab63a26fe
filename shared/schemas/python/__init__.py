"""Pydantic models for the trading journal tables."""

from .models import (
    Achievement,
    DailyCheckIn,
    Notification,
    RuleViolation,
    Trade,
    TradingRule,
    UserAchievement,
    UserGoal,
    UserProgress,
)

__all__ = [
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
