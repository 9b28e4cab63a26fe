"""
Achievement Unlocks

Scans achievement definitions against aggregate stats and records unlocks.
Unlocks are monotonic: once a (user, achievement) row exists it is never
re-evaluated or revoked, so repeated scans with the same stats are no-ops.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.schemas.python.models import Achievement, UserAchievement
from utils.logger import log_user_action
from utils.notifications import notify_achievement_unlocked
from utils.progression import achievement_bonus
from utils.rule_checks import MIN_JOURNAL_NOTES
from utils.supabase_client import TableStore
from utils.timezone import to_ny
from utils.user_progress import ProgressNotFoundError, award_xp, load_progress, save_progress

logger = logging.getLogger(__name__)

# requirement_type -> stats key(s), first present wins
REQUIREMENT_METRICS: Dict[str, tuple] = {
    "check_ins": ("check_ins",),
    "streak": ("streak",),
    "level": ("level",),
    "discipline_score": ("discipline_score",),
    "completions": ("completions", "units_cracked"),
    "count": ("completions", "units_cracked"),
    "beers_cracked": ("completions", "units_cracked"),
    "units_cracked": ("completions", "units_cracked"),
    "rules": ("days_without_violation",),
    "journal": ("journal_streak",),
}


def requirement_met(achievement: Achievement, stats: Mapping[str, Any]) -> bool:
    """Simple ``>=`` threshold test; unknown types and missing stats never unlock."""
    keys = REQUIREMENT_METRICS.get(achievement.requirement_type)
    if not keys:
        return False
    for key in keys:
        value = stats.get(key)
        if value is not None:
            return value >= achievement.requirement_value
    return False


async def load_unlocked_ids(store: TableStore, user_id: str) -> set:
    rows = await store.select("user_achievements", {"user_id": user_id}, columns="achievement_id")
    return {row["achievement_id"] for row in rows}


async def _award_stars(store: TableStore, user_id: str, stars: int) -> None:
    existing = await store.select_one("user_stars", {"user_id": user_id})
    if existing:
        await store.update(
            "user_stars",
            {"total_stars": existing.get("total_stars", 0) + stars},
            {"user_id": user_id},
        )
    else:
        await store.insert("user_stars", {"user_id": user_id, "total_stars": stars})


async def refresh_achievement_bonus(store: TableStore, user_id: str) -> float:
    """Recompute achievement_bonus over every unlocked achievement."""
    unlocked_ids = await load_unlocked_ids(store, user_id)
    definitions = await store.select("achievements")
    unlocked = [
        Achievement.model_validate(row) for row in definitions if row.get("id") in unlocked_ids
    ]
    bonus = achievement_bonus(unlocked)

    progress = await load_progress(store, user_id)
    await save_progress(store, progress, {"achievement_bonus": bonus})
    return bonus


async def check_and_unlock_achievements(
    store: TableStore,
    user_id: str,
    stats: Mapping[str, Any],
) -> List[Achievement]:
    """Unlock every active, not-yet-unlocked achievement whose threshold ``stats`` meets."""
    definitions = [
        Achievement.model_validate(row)
        for row in await store.select("achievements", {"is_active": True})
    ]
    unlocked_ids = await load_unlocked_ids(store, user_id)

    newly_unlocked: List[Achievement] = []
    for achievement in definitions:
        if achievement.id in unlocked_ids:
            continue
        if not requirement_met(achievement, stats):
            continue

        record = UserAchievement(user_id=user_id, achievement_id=achievement.id)
        await store.insert("user_achievements", record.model_dump(mode="json", exclude_none=True))
        unlocked_ids.add(achievement.id)
        newly_unlocked.append(achievement)
        log_user_action(user_id, "achievement_unlocked", achievement.name)

        if achievement.star_reward > 0:
            await _award_stars(store, user_id, achievement.star_reward)
        if achievement.xp_reward > 0:
            await award_xp(store, user_id, achievement.xp_reward, f"achievement:{achievement.id}")
        await notify_achievement_unlocked(store, user_id, achievement.name, achievement.icon or "🏆")

    if newly_unlocked:
        try:
            await refresh_achievement_bonus(store, user_id)
        except ProgressNotFoundError:
            logger.debug("No progress row for user_id=%s; achievement bonus not stored", user_id)

    return newly_unlocked


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    return (now - moment).total_seconds() / 86400


def journal_streak(entries: Iterable[Tuple[datetime, Optional[str]]]) -> int:
    """Longest run of consecutive New York days carrying a journal note of 10+ characters."""
    days = sorted(
        {
            to_ny(_parse_timestamp(created_at)).date()
            for created_at, notes in entries
            if created_at is not None and notes and len(notes.strip()) >= MIN_JOURNAL_NOTES
        }
    )
    best = 0
    run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous is not None and (day - previous).days == 1 else 1
        best = max(best, run)
        previous = day
    return best


async def gather_stats(
    store: TableStore,
    user_id: str,
    account_created_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Aggregate stats for a full scan, read from progress, violations and trades."""
    now = now or datetime.now(timezone.utc)
    progress = await load_progress(store, user_id)

    last_violation = await store.select(
        "rule_violations", {"user_id": user_id}, order="violated_at", desc=True, limit=1
    )
    if last_violation:
        clean_since = _parse_timestamp(last_violation[0].get("violated_at"))
    else:
        clean_since = account_created_at

    trades = await store.select(
        "trades", {"user_id": user_id}, columns="created_at,notes", order="created_at", desc=True
    )

    return {
        "check_ins": progress.total_check_ins,
        "streak": progress.streak,
        "level": progress.level,
        "completions": progress.units_cracked,
        "discipline_score": progress.discipline_score,
        "days_without_violation": days_since(clean_since, now),
        "journal_streak": journal_streak((row.get("created_at"), row.get("notes")) for row in trades),
    }
