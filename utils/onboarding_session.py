# onboarding_session.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from shared.schemas.python.models import TradingRule, UserGoal, UserProgress
from utils.default_rules import category_for, initialize_default_rules, insert_rules
from utils.logger import log_user_action
from utils.supabase_client import TableStore
from utils.user_progress import ensure_progress

STEP_RULES = "rules"
STEP_GOAL = "goal"
STEP_REVIEW = "review"


class OnboardingError(ValueError):
    """Raised when an onboarding step is taken out of order or is incomplete."""


class GoalInputs(BaseModel):
    starting_capital: float = Field(..., gt=0)
    target_percent_per_unit: float = Field(..., gt=0)
    total_units: int = Field(..., ge=1)
    max_loss_percent: Optional[float] = Field(None, gt=0)


@dataclass
class OnboardingSession:
    user_id: str
    current_step: str = STEP_RULES
    selected_rules: List[str] = field(default_factory=list)
    goal: Optional[GoalInputs] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OnboardingResult:
    goal: UserGoal
    rules: List[TradingRule]
    progress: UserProgress


class OnboardingState:
    """In-process registry of onboarding flows, one per user."""

    def __init__(self):
        self.sessions: Dict[str, OnboardingSession] = {}

    def start_session(self, user_id: str) -> OnboardingSession:
        session = OnboardingSession(user_id=user_id)
        self.sessions[user_id] = session
        return session

    def get_session(self, user_id: str) -> Optional[OnboardingSession]:
        return self.sessions.get(user_id)

    def _require(self, user_id: str) -> OnboardingSession:
        session = self.sessions.get(user_id)
        if session is None:
            raise OnboardingError("No onboarding in progress")
        return session

    def select_rules(self, user_id: str, rules: List[str]) -> OnboardingSession:
        session = self._require(user_id)
        session.selected_rules = [rule.strip() for rule in rules if rule and rule.strip()]
        session.current_step = STEP_GOAL
        return session

    def set_goal(self, user_id: str, goal: GoalInputs) -> OnboardingSession:
        session = self._require(user_id)
        if session.current_step == STEP_RULES:
            raise OnboardingError("Choose your rules before setting a goal")
        session.goal = goal
        session.current_step = STEP_REVIEW
        return session

    def end_session(self, user_id: str) -> Optional[OnboardingSession]:
        return self.sessions.pop(user_id, None)

    async def complete(self, store: TableStore, user_id: str) -> OnboardingResult:
        """Persist the goal, rules and starting progress, then drop the session."""
        session = self._require(user_id)
        if session.goal is None:
            raise OnboardingError("A goal is required to finish onboarding")

        goal = await create_goal(store, user_id, session.goal)
        if session.selected_rules:
            rules = await insert_rules(
                store,
                user_id,
                [{"rule": text, "category": category_for(text) or "General"} for text in session.selected_rules],
            )
        else:
            rules = await initialize_default_rules(store, user_id)
        progress = await ensure_progress(store, user_id)

        self.end_session(user_id)
        log_user_action(user_id, "onboarding_completed", f"{len(rules)} rules, {goal.total_units} units")
        return OnboardingResult(goal=goal, rules=rules, progress=progress)


async def create_goal(store: TableStore, user_id: str, inputs: GoalInputs) -> UserGoal:
    """Deactivate any previous goal and insert the new active one."""
    await store.update("user_goals", {"is_active": False}, {"user_id": user_id, "is_active": True})
    goal = UserGoal(
        user_id=user_id,
        starting_capital=inputs.starting_capital,
        current_capital=inputs.starting_capital,
        target_percent_per_unit=inputs.target_percent_per_unit,
        total_units=inputs.total_units,
        units_remaining=inputs.total_units,
        max_loss_percent=inputs.max_loss_percent,
    )
    rows = await store.insert("user_goals", goal.model_dump(mode="json", exclude_none=True))
    return UserGoal.model_validate(rows[0]) if rows else goal


onboarding_state = OnboardingState()
