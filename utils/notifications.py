"""
In-app notifications written to the ``notifications`` table.

Delivery (dropdown, browser push) is the client's job; the engine only
records the rows. A failed notification write is logged and never aborts
the action that triggered it.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from shared.schemas.python.models import Notification
from utils.supabase_client import TableStore

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (3, 7, 14, 30, 60, 90)


async def create_notification(
    store: TableStore,
    user_id: str,
    type: str,
    title: str,
    message: str,
    icon: str = "🔔",
    action_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        icon=icon,
        action_url=action_url,
        metadata=metadata,
    )
    try:
        await store.insert("notifications", notification.model_dump(mode="json", exclude_none=True))
    except httpx.HTTPError as exc:
        logger.warning("Failed to create %s notification for user_id=%s: %s", type, user_id, exc)
        return False
    return True


async def notify_achievement_unlocked(store: TableStore, user_id: str, achievement_name: str, icon: str = "🏆") -> bool:
    return await create_notification(
        store,
        user_id,
        "achievement",
        "Achievement Unlocked!",
        f'You earned "{achievement_name}"!',
        icon,
        "/achievements.html",
    )


async def notify_streak_milestone(store: TableStore, user_id: str, days: int, icon: str = "🔥") -> bool:
    return await create_notification(
        store,
        user_id,
        "streak",
        f"{days} Day Streak!",
        f"Amazing! You've maintained a {days} day streak. Keep it up!",
        icon,
    )


async def notify_rule_violation(store: TableStore, user_id: str, rule_text: str, reason: str, icon: str = "⚠️") -> bool:
    return await create_notification(
        store,
        user_id,
        "rule_violation",
        "Rule Violation",
        f"You violated your rule: {rule_text} ({reason})",
        icon,
        "/rules.html",
    )


async def notify_unit_cracked(store: TableStore, user_id: str, unit_number: int, units_remaining: int, icon: str = "🍺") -> bool:
    return await create_notification(
        store,
        user_id,
        "goal_reached",
        f"Unit #{unit_number} cracked!",
        f"{units_remaining} remaining on the wall.",
        icon,
        metadata={"unit_number": unit_number},
    )


async def notify_level_up(store: TableStore, user_id: str, level: int, icon: str = "🎉") -> bool:
    return await create_notification(
        store,
        user_id,
        "level_up",
        "Level Up!",
        f"You reached Level {level}",
        icon,
    )
