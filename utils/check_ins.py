"""
Daily Check-ins

At most one check-in per user per New York calendar day. A check-in extends
or resets the streak, earns XP, refreshes the progress aggregate and then
runs the achievement scan with the fresh stats.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from shared.schemas.python.models import Achievement, DailyCheckIn, UserProgress
from utils.achievements import check_and_unlock_achievements
from utils.logger import log_user_action
from utils.notifications import STREAK_MILESTONES, notify_level_up, notify_streak_milestone
from utils.progression import streak_multiplier
from utils.supabase_client import TableStore
from utils.timezone import days_between, today_ny
from utils.user_progress import ensure_progress, level_fields, save_progress

logger = logging.getLogger(__name__)

BASE_CHECK_IN_XP = 10
STREAK_XP_PER_DAY = 2
DISCIPLINE_XP_PER_POINT = 5


class AlreadyCheckedInError(ValueError):
    """Raised on a second check-in for the same calendar day."""


class CheckInSubmission(BaseModel):
    discipline_rating: int = Field(..., ge=0, le=10)
    followed_rules: bool = True
    traded_today: bool = False
    trades_count: int = Field(0, ge=0)
    win_rate: Optional[float] = None
    profit_loss: Optional[float] = None
    notes: Optional[str] = None
    emotions: List[str] = Field(default_factory=list)


@dataclass
class CheckInResult:
    xp_earned: int
    streak: int
    level: int
    leveled_up: bool
    streak_multiplier_before: float
    streak_multiplier: float
    new_achievements: List[Achievement] = field(default_factory=list)


def next_streak(last_check_in: Optional[date], today: date, current_streak: int) -> int:
    if last_check_in is None:
        return 1
    gap = days_between(last_check_in, today)
    if gap == 1:
        return current_streak + 1
    if gap == 0:
        return current_streak
    return 1


def check_in_xp(banked_streak: int, discipline_rating: int) -> int:
    """XP for a check-in; the streak bonus counts days already banked before today."""
    return BASE_CHECK_IN_XP + banked_streak * STREAK_XP_PER_DAY + discipline_rating * DISCIPLINE_XP_PER_POINT


def updated_discipline_score(progress: UserProgress, rating: int) -> float:
    """Running average of every rating submitted so far."""
    count = progress.total_check_ins
    return (progress.discipline_score * count + rating) / (count + 1)


async def perform_daily_check_in(
    store: TableStore,
    user_id: str,
    submission: CheckInSubmission,
    today: Optional[date] = None,
) -> CheckInResult:
    today = today or today_ny()
    progress = await ensure_progress(store, user_id)

    existing = await store.select_one("daily_check_ins", {"user_id": user_id, "check_in_date": today})
    if existing:
        logger.info("Duplicate check-in for user_id=%s on %s", user_id, today)
        raise AlreadyCheckedInError("Already checked in today!")

    multiplier_before = streak_multiplier(progress.streak)
    streak = next_streak(progress.last_check_in_date, today, progress.streak)
    xp_earned = check_in_xp(max(streak - 1, 0), submission.discipline_rating)

    check_in = DailyCheckIn(
        user_id=user_id,
        check_in_date=today,
        xp_earned=xp_earned,
        streak_at_time=streak,
        **submission.model_dump(),
    )
    await store.insert("daily_check_ins", check_in.model_dump(mode="json", exclude_none=True))

    discipline_score = updated_discipline_score(progress, submission.discipline_rating)
    changes = level_fields(progress.experience + xp_earned)
    changes.update(
        {
            "streak": streak,
            "longest_streak": max(streak, progress.longest_streak),
            "discipline_score": discipline_score,
            "total_check_ins": progress.total_check_ins + 1,
            "last_check_in_date": today,
            "streak_multiplier": streak_multiplier(streak),
        }
    )
    saved = await save_progress(store, progress, changes)
    log_user_action(user_id, "check_in", f"streak={streak} xp=+{xp_earned} level={saved.level}")

    leveled_up = saved.level > progress.level
    if leveled_up:
        await notify_level_up(store, user_id, saved.level)
    if streak in STREAK_MILESTONES and streak != progress.streak:
        await notify_streak_milestone(store, user_id, streak)

    new_achievements = await check_and_unlock_achievements(
        store,
        user_id,
        {
            "check_ins": saved.total_check_ins,
            "streak": streak,
            "level": saved.level,
            "completions": saved.units_cracked,
            "discipline_score": discipline_score,
        },
    )

    return CheckInResult(
        xp_earned=xp_earned,
        streak=streak,
        level=saved.level,
        leveled_up=leveled_up,
        streak_multiplier_before=multiplier_before,
        streak_multiplier=streak_multiplier(streak),
        new_achievements=new_achievements,
    )
