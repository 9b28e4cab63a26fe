from typing import List, Optional

from pydantic import BaseModel

from shared.schemas.python.models import Achievement
from utils.achievements import load_unlocked_ids
from utils.progression import level_from_xp, projected_balance, total_growth_multiplier
from utils.supabase_client import TableStore
from utils.trade_journal import load_active_goal
from utils.user_progress import load_progress


class GoalSummary(BaseModel):
    starting_capital: float
    current_capital: float
    target_percent_per_unit: float
    total_units: int
    units_cracked: int
    units_remaining: int
    units_spilled: int
    projected_balance: float
    completion_percent: float


class ProgressSummary(BaseModel):
    user_id: str
    level: int
    experience: int
    current_level_xp: float
    next_level_xp: int
    xp_to_next_level: float
    level_progress_percent: float
    streak: int
    longest_streak: int
    discipline_score: float
    total_check_ins: int
    streak_multiplier: float
    level_bonus: float
    achievement_bonus: float
    growth_multiplier: float
    total_stars: int
    achievements_unlocked: int
    goal: Optional[GoalSummary] = None


async def load_unlocked_achievements(store: TableStore, user_id: str) -> List[Achievement]:
    unlocked_ids = await load_unlocked_ids(store, user_id)
    if not unlocked_ids:
        return []
    rows = await store.select("achievements")
    return [Achievement.model_validate(row) for row in rows if row.get("id") in unlocked_ids]


async def get_progress_summary(store: TableStore, user_id: str) -> ProgressSummary:
    """Dashboard view of a user's progress; raises ProgressNotFoundError when none exists."""
    progress = await load_progress(store, user_id)
    info = level_from_xp(progress.experience)
    unlocked = await load_unlocked_achievements(store, user_id)

    goal_summary = None
    goal = await load_active_goal(store, user_id)
    if goal is not None:
        completion = goal.units_cracked / goal.total_units * 100 if goal.total_units else 0.0
        goal_summary = GoalSummary(
            starting_capital=goal.starting_capital,
            current_capital=goal.current_capital,
            target_percent_per_unit=goal.target_percent_per_unit,
            total_units=goal.total_units,
            units_cracked=goal.units_cracked,
            units_remaining=goal.units_remaining,
            units_spilled=goal.units_spilled,
            projected_balance=projected_balance(
                goal.starting_capital, goal.target_percent_per_unit, goal.total_units
            ),
            completion_percent=min(completion, 100.0),
        )

    return ProgressSummary(
        user_id=user_id,
        level=info.level,
        experience=progress.experience,
        current_level_xp=info.current_level_xp,
        next_level_xp=info.next_level_xp,
        xp_to_next_level=info.xp_to_next_level,
        level_progress_percent=info.progress_percent,
        streak=progress.streak,
        longest_streak=progress.longest_streak,
        discipline_score=progress.discipline_score,
        total_check_ins=progress.total_check_ins,
        streak_multiplier=progress.streak_multiplier,
        level_bonus=progress.level_bonus,
        achievement_bonus=progress.achievement_bonus,
        growth_multiplier=total_growth_multiplier(1.0, progress.streak, info.level, unlocked),
        total_stars=progress.total_stars,
        achievements_unlocked=len(unlocked),
        goal=goal_summary,
    )
