"""
Trade Journal Orchestration

Sequences the pure calculators against the table store when a trade is
saved or closed: rule violations and follows, the compounding unit tracker,
close XP and loss spills. Writes are plain inserts/updates with no
cross-table transaction; a failure part-way leaves earlier writes in place.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

import config
from shared.schemas.python.models import RuleViolation, Trade, TradingRule, UserGoal
from utils.logger import log_user_action
from utils.notifications import notify_rule_violation, notify_unit_cracked
from utils.progression import units_completed
from utils.rule_checks import RuleContext, RuleDetector, ViolationResult, default_detector, followed_rules
from utils.supabase_client import TableStore
from utils.user_progress import award_xp, ensure_progress, level_fields, save_progress

logger = logging.getLogger(__name__)

PenaltyCallback = Callable[[TableStore, str, ViolationResult], Awaitable[None]]

RECENT_CLOSED_LOOKBACK = 3


class TradeNotFoundError(LookupError):
    """Raised when a trade id does not resolve for the requesting user."""


class TradeCloseError(ValueError):
    """Raised for invalid close requests (already closed, bad size or price)."""


@dataclass
class TrackerResult:
    current_capital: float
    units_cracked: int
    new_units: int
    units_remaining: int


@dataclass
class SaveTradeResult:
    trade: Trade
    violations: List[ViolationResult] = field(default_factory=list)
    followed: List[TradingRule] = field(default_factory=list)
    tracker: Optional[TrackerResult] = None


@dataclass
class CloseTradeResult:
    trade: Trade
    pnl: float
    closed_size: float
    remaining_size: float
    xp_earned: int
    spilled: bool = False
    tracker: Optional[TrackerResult] = None

    @property
    def full_close(self) -> bool:
        return self.remaining_size == 0


async def load_active_goal(store: TableStore, user_id: str) -> Optional[UserGoal]:
    row = await store.select_one("user_goals", {"user_id": user_id, "is_active": True})
    return UserGoal.model_validate(row) if row else None


async def load_active_rules(store: TableStore, user_id: str) -> List[TradingRule]:
    rows = await store.select("trading_rules", {"user_id": user_id, "is_active": True})
    return [TradingRule.model_validate(row) for row in rows]


async def build_rule_context(store: TableStore, user_id: str, trade: Trade) -> RuleContext:
    goal = await load_active_goal(store, user_id)
    open_trades = await store.select("trades", {"user_id": user_id, "status": "open"}, columns="id")
    recent_rows = await store.select(
        "trades",
        {"user_id": user_id, "status": "closed"},
        order="created_at",
        desc=True,
        limit=RECENT_CLOSED_LOOKBACK + 1,
    )
    recent = [
        Trade.model_validate(row) for row in recent_rows if not trade.id or row.get("id") != trade.id
    ][:RECENT_CLOSED_LOOKBACK]

    return RuleContext(
        goal_capital=goal.current_capital if goal else None,
        open_trade_count=len(open_trades),
        recent_closed_trades=tuple(recent),
    )


async def penalize_for_violation(store: TableStore, user_id: str, violation: ViolationResult) -> None:
    """Default penalty: deduct XP and leave a notification."""
    await award_xp(store, user_id, -config.VIOLATION_XP_PENALTY, f"violation:{violation.rule.id}")
    await notify_rule_violation(store, user_id, violation.rule.rule_text, violation.reason)


async def log_violation(
    store: TableStore,
    trade: Trade,
    violation: ViolationResult,
    penalty: Optional[PenaltyCallback] = penalize_for_violation,
) -> None:
    rule = violation.rule
    record = RuleViolation(
        rule_id=rule.id,
        trade_id=trade.id,
        user_id=trade.user_id,
        notes=violation.reason,
        violated_at=datetime.now(timezone.utc),
    )
    await store.insert("rule_violations", record.model_dump(mode="json", exclude_none=True))
    await store.update(
        "trading_rules",
        {"times_violated": rule.times_violated + 1},
        {"id": rule.id},
    )
    if penalty is not None:
        await penalty(store, trade.user_id, violation)
    log_user_action(trade.user_id, "rule_violation", f"{rule.rule_text}: {violation.reason}", level="warning")


async def record_trade_violations(
    store: TableStore,
    trade: Trade,
    *,
    detector: RuleDetector = default_detector,
    penalty: Optional[PenaltyCallback] = penalize_for_violation,
    rules: Optional[List[TradingRule]] = None,
) -> List[ViolationResult]:
    """Detect, persist and penalise every rule the trade violates."""
    if rules is None:
        rules = await load_active_rules(store, trade.user_id)
    if not rules:
        return []

    context = await build_rule_context(store, trade.user_id, trade)
    violations = detector.check_trade(trade, rules, context)
    for violation in violations:
        await log_violation(store, trade, violation, penalty)
    return violations


async def mark_rules_followed(store: TableStore, trade: Trade, rules: List[TradingRule]) -> List[TradingRule]:
    followed = followed_rules(trade, rules)
    for rule in followed:
        await store.update(
            "trading_rules",
            {"times_followed": rule.times_followed + 1},
            {"id": rule.id},
        )
    return followed


async def cumulative_pnl(store: TableStore, user_id: str) -> float:
    rows = await store.select("trades", {"user_id": user_id, "status": "closed"})
    return sum(Trade.model_validate(row).pnl() for row in rows)


async def update_progress_tracker(store: TableStore, user_id: str) -> Optional[TrackerResult]:
    """
    Re-derive capital from closed-trade P&L and convert growth into units.

    Units above the goal's high-water mark (``units_rewarded``) each earn
    XP_PER_UNIT and get their own notification. ``units_cracked`` follows
    capital down after a loss; the mark never does, so a unit that is lost
    and regained is paid once.
    """
    goal = await load_active_goal(store, user_id)
    if goal is None:
        logger.debug("No active goal for user_id=%s; unit tracker skipped", user_id)
        return None

    current_capital = goal.starting_capital + await cumulative_pnl(store, user_id)
    units = units_completed(
        goal.starting_capital,
        current_capital,
        goal.target_percent_per_unit,
        goal.total_units,
    )
    rewarded = max(goal.units_rewarded, goal.units_cracked)
    new_units = max(units - rewarded, 0)
    remaining = max(goal.total_units - units, 0)

    await store.update(
        "user_goals",
        {
            "current_capital": current_capital,
            "units_cracked": units,
            "units_remaining": remaining,
            "units_rewarded": rewarded + new_units,
        },
        {"user_id": user_id, "is_active": True},
    )

    progress = await ensure_progress(store, user_id)
    changes = {"units_cracked": units}
    if new_units:
        changes.update(level_fields(progress.experience + new_units * config.XP_PER_UNIT))
    await save_progress(store, progress, changes)

    for offset in range(new_units):
        unit_number = rewarded + offset + 1
        await notify_unit_cracked(store, user_id, unit_number, max(goal.total_units - unit_number, 0))
    if new_units:
        log_user_action(user_id, "units_cracked", f"+{new_units} (total {units}, capital {current_capital:.2f})")

    return TrackerResult(
        current_capital=current_capital,
        units_cracked=units,
        new_units=new_units,
        units_remaining=remaining,
    )


async def save_trade(
    store: TableStore,
    trade: Trade,
    *,
    penalty: Optional[PenaltyCallback] = penalize_for_violation,
) -> SaveTradeResult:
    payload = trade.model_dump(mode="json", exclude_none=True)
    payload.setdefault("created_at", datetime.now(timezone.utc).isoformat())
    rows = await store.insert("trades", payload)
    saved = Trade.model_validate(rows[0]) if rows else trade
    log_user_action(saved.user_id, "trade_saved", f"{saved.symbol} {saved.direction} {saved.status}")

    # Penalties and unit XP below write to the progress row.
    await ensure_progress(store, saved.user_id)
    rules = await load_active_rules(store, saved.user_id)
    violations = await record_trade_violations(store, saved, penalty=penalty, rules=rules)
    followed = await mark_rules_followed(store, saved, rules)
    tracker = await update_progress_tracker(store, saved.user_id)

    return SaveTradeResult(trade=saved, violations=violations, followed=followed, tracker=tracker)


async def record_unit_spill(store: TableStore, user_id: str, goal: UserGoal, loss: float) -> bool:
    """Count a spill when a single loss exceeds the goal's max loss percent of capital."""
    if loss >= 0 or not goal.max_loss_percent or goal.current_capital <= 0:
        return False
    loss_percent = abs(loss) / goal.current_capital * 100
    if loss_percent < goal.max_loss_percent:
        return False

    progress = await ensure_progress(store, user_id)
    spilled = progress.units_spilled + 1
    await save_progress(store, progress, {"units_spilled": spilled})
    await store.update("user_goals", {"units_spilled": spilled}, {"user_id": user_id, "is_active": True})
    log_user_action(user_id, "unit_spilled", f"loss {loss_percent:.2f}% >= {goal.max_loss_percent}%", level="warning")
    return True


async def close_trade(
    store: TableStore,
    user_id: str,
    trade_id: str,
    exit_price: float,
    close_size: Optional[float] = None,
    exit_time: Optional[datetime] = None,
) -> CloseTradeResult:
    """Close all or part of an open position; a partial close splits off a closed row."""
    row = await store.select_one("trades", {"id": trade_id, "user_id": user_id})
    if not row:
        raise TradeNotFoundError(f"Trade {trade_id} not found")
    trade = Trade.model_validate(row)

    if trade.status != "open":
        raise TradeCloseError("Trade is already closed")
    if exit_price is None or exit_price <= 0:
        raise TradeCloseError("Exit price must be greater than zero")
    size = trade.position_size if close_size is None else close_size
    if size <= 0 or size > trade.position_size:
        raise TradeCloseError(f"Close size must be between 0 and {trade.position_size}")

    exit_time = exit_time or datetime.now(timezone.utc)
    remaining = trade.position_size - size

    if remaining == 0:
        updated = await store.update(
            "trades",
            {"status": "closed", "exit_price": exit_price, "exit_time": exit_time.isoformat()},
            {"id": trade_id},
        )
        closed = Trade.model_validate(updated[0]) if updated else trade.model_copy(
            update={"status": "closed", "exit_price": exit_price, "exit_time": exit_time}
        )
    else:
        split = trade.model_copy(
            update={
                "id": None,
                "position_size": size,
                "status": "closed",
                "exit_price": exit_price,
                "exit_time": exit_time,
                "created_at": exit_time,
                "notes": (
                    f"Partial close of {trade.symbol} ({size:g}/{trade.position_size:g})\n\n"
                    f"Original notes: {trade.notes or 'None'}"
                ),
            }
        )
        inserted = await store.insert("trades", split.model_dump(mode="json", exclude_none=True))
        closed = Trade.model_validate(inserted[0]) if inserted else split
        await store.update(
            "trades",
            {
                "position_size": remaining,
                "notes": (
                    f"{trade.notes or ''}\n\n[{exit_time.date().isoformat()}] Partial close: "
                    f"{size:g} closed at ${exit_price}, {remaining:g} remaining"
                ),
            },
            {"id": trade_id},
        )

    pnl = closed.pnl()
    await ensure_progress(store, user_id)
    await award_xp(store, user_id, config.TRADE_CLOSE_XP, f"close:{trade_id}")

    goal = await load_active_goal(store, user_id)
    spilled = await record_unit_spill(store, user_id, goal, pnl) if goal else False
    tracker = await update_progress_tracker(store, user_id)

    log_user_action(user_id, "trade_closed", f"{trade.symbol} size={size:g} pnl={pnl:.2f}")
    return CloseTradeResult(
        trade=closed,
        pnl=pnl,
        closed_size=size,
        remaining_size=remaining,
        xp_earned=config.TRADE_CLOSE_XP,
        spilled=spilled,
        tracker=tracker,
    )
