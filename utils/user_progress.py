"""
User Progress Persistence

Single-row-per-user progress aggregate. Every write is conditional on the
row's ``version`` column and bumps it, so two tabs racing through
"read progress -> compute XP -> write" cannot silently overwrite each other:
the loser gets StaleProgressError and its action aborts.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.schemas.python.models import UserProgress
from utils.logger import log_user_action
from utils.progression import level_bonus, level_from_xp
from utils.supabase_client import TableStore

logger = logging.getLogger(__name__)

PROGRESS_TABLE = "user_progress"


class ProgressNotFoundError(LookupError):
    """Raised when a user has no progress row yet."""


class StaleProgressError(RuntimeError):
    """Raised when a conditional progress update matched no row."""


@dataclass(frozen=True)
class XPAward:
    experience: int
    level: int
    previous_level: int

    @property
    def leveled_up(self) -> bool:
        return self.level > self.previous_level


async def load_progress(store: TableStore, user_id: str) -> UserProgress:
    row = await store.select_one(PROGRESS_TABLE, {"user_id": user_id})
    if not row:
        raise ProgressNotFoundError(f"No progress row for user {user_id}")
    return UserProgress.model_validate(row)


async def ensure_progress(store: TableStore, user_id: str) -> UserProgress:
    """Return the user's progress row, creating a fresh one when missing."""
    row = await store.select_one(PROGRESS_TABLE, {"user_id": user_id})
    if row:
        return UserProgress.model_validate(row)

    progress = UserProgress(user_id=user_id)
    created = await store.insert(PROGRESS_TABLE, progress.model_dump(mode="json"))
    log_user_action(user_id, "progress_created")
    return UserProgress.model_validate(created[0]) if created else progress


async def save_progress(store: TableStore, progress: UserProgress, changes: Dict[str, Any]) -> UserProgress:
    """Apply ``changes`` to the row read as ``progress``; fails if it moved on since."""
    next_version = progress.version + 1
    updated = progress.model_copy(update={**changes, "version": next_version})
    payload = updated.model_dump(mode="json", include=set(changes) | {"version"})

    rows = await store.update(
        PROGRESS_TABLE,
        payload,
        {"user_id": progress.user_id, "version": progress.version},
    )
    if not rows:
        logger.warning(
            "Stale progress write for user_id=%s at version=%s",
            progress.user_id,
            progress.version,
        )
        raise StaleProgressError(
            f"Progress for user {progress.user_id} changed concurrently; reload and retry."
        )
    return UserProgress.model_validate(rows[0])


def level_fields(experience: int) -> Dict[str, Any]:
    """Level columns derived from total experience."""
    info = level_from_xp(experience)
    return {
        "experience": experience,
        "level": info.level,
        "next_level_xp": info.next_level_xp,
        "level_bonus": level_bonus(info.level),
    }


async def award_xp(
    store: TableStore,
    user_id: str,
    amount: int,
    reason: str,
    progress: Optional[UserProgress] = None,
) -> XPAward:
    """
    Add (or, with a negative amount, deduct) experience and recompute the level.

    Experience never drops below zero.
    """
    current = progress or await load_progress(store, user_id)
    experience = max(current.experience + amount, 0)
    saved = await save_progress(store, current, level_fields(experience))
    log_user_action(user_id, "xp", f"{amount:+d} ({reason}) -> {experience}")
    return XPAward(experience=saved.experience, level=saved.level, previous_level=current.level)
