"""
Rule Checks

Keyword heuristics that compare a trade against a user's free-text trading
rules. Each rule text is lower-cased and handed to an ordered list of
heuristics; the first one that reports a violation supplies the reason, so a
rule yields at most one violation per trade. Text that no heuristic
understands never produces a violation.

The detector is pure: everything it needs from the table store (goal capital,
open positions, recent closed trades) arrives in a RuleContext built by the
caller.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from shared.schemas.python.models import Trade, TradingRule
from utils.timezone import (
    format_ny_time,
    is_ny_market_open,
    is_opening_or_closing_window,
)

MAX_RISK_FRACTION = 0.02
MIN_REWARD_RISK = 3.0
REVENGE_WINDOW = timedelta(minutes=30)
MIN_JOURNAL_NOTES = 10


@dataclass(frozen=True)
class RuleContext:
    goal_capital: Optional[float] = None
    open_trade_count: int = 0
    # Newest first, excluding the trade under review.
    recent_closed_trades: Sequence[Trade] = field(default_factory=tuple)


@dataclass(frozen=True)
class ViolationResult:
    rule: TradingRule
    reason: str


class RuleHeuristic(ABC):
    """One keyword family and the trade check attached to it."""

    name = "base"

    @abstractmethod
    def matches(self, text: str) -> bool:
        ...

    @abstractmethod
    def evaluate(self, trade: Trade, text: str, context: RuleContext) -> Optional[str]:
        """Return a violation reason, or None when the trade complies."""


class RiskPercentHeuristic(RuleHeuristic):
    name = "risk_percent"

    def matches(self, text: str) -> bool:
        return "risk" in text and "2%" in text

    def evaluate(self, trade, text, context):
        if not context.goal_capital:
            return None
        max_risk = context.goal_capital * MAX_RISK_FRACTION
        risk = abs(trade.entry_price - (trade.stop_loss or 0)) * trade.position_size
        if risk > max_risk:
            return f"Risked ${risk:.2f} (>{max_risk:.2f} max)"
        return None


class StopLossHeuristic(RuleHeuristic):
    name = "stop_loss"

    def matches(self, text: str) -> bool:
        return "stop loss" in text and "always" in text

    def evaluate(self, trade, text, context):
        if not trade.stop_loss:
            return "No stop loss set"
        return None


class MaxOpenPositionsHeuristic(RuleHeuristic):
    name = "max_open_positions"
    _limit_pattern = re.compile(r"(\d+)\s+open")

    def matches(self, text: str) -> bool:
        return "maximum" in text and "open positions" in text

    def evaluate(self, trade, text, context):
        match = self._limit_pattern.search(text)
        if not match:
            return None
        limit = int(match.group(1))
        if context.open_trade_count >= limit:
            return f"{context.open_trade_count} positions open (max {limit})"
        return None


class MarketHoursHeuristic(RuleHeuristic):
    name = "market_hours"

    def matches(self, text: str) -> bool:
        return "market hours" in text or "9:30" in text

    def evaluate(self, trade, text, context):
        moment = trade.executed_at
        if moment is None:
            return None
        if not is_ny_market_open(moment):
            return f"Traded at {format_ny_time(moment)} ET (outside market hours)"
        return None


class OpeningClosingWindowHeuristic(RuleHeuristic):
    name = "first_last_15"

    def matches(self, text: str) -> bool:
        return "first" in text and "15" in text

    def evaluate(self, trade, text, context):
        moment = trade.executed_at
        if moment is None:
            return None
        if is_opening_or_closing_window(moment):
            return "Traded in first/last 15 minutes of market"
        return None


def reward_risk_ratio(trade: Trade) -> Optional[float]:
    """Reward:risk from stop and target, or None when it cannot be computed."""
    if not trade.stop_loss or not trade.target_price:
        return None
    risk = abs(trade.entry_price - trade.stop_loss)
    if risk == 0:
        return None
    reward = abs(trade.target_price - trade.entry_price)
    return reward / risk


class RewardRiskHeuristic(RuleHeuristic):
    name = "reward_risk"

    def matches(self, text: str) -> bool:
        return "3:1" in text or ("reward" in text and "risk" in text)

    def evaluate(self, trade, text, context):
        ratio = reward_risk_ratio(trade)
        if ratio is not None and ratio < MIN_REWARD_RISK:
            return f"R:R ratio {ratio:.2f}:1 (min 3:1)"
        return None


class RevengeTradeHeuristic(RuleHeuristic):
    name = "revenge"

    def matches(self, text: str) -> bool:
        return "revenge" in text or ("after" in text and "loss" in text)

    def evaluate(self, trade, text, context):
        if not context.recent_closed_trades:
            return None
        last = context.recent_closed_trades[0]
        if last.pnl() >= 0:
            return None

        last_time = last.exit_time or last.created_at
        current_time = trade.executed_at
        if last_time is None or current_time is None:
            return None
        elapsed = current_time - last_time
        if timedelta(0) <= elapsed < REVENGE_WINDOW:
            return "Possible revenge trade (within 30 min of loss)"
        return None


class BreakAfterLossesHeuristic(RuleHeuristic):
    name = "break_after_losses"

    def matches(self, text: str) -> bool:
        return "break" in text and "2" in text and "loss" in text

    def evaluate(self, trade, text, context):
        last_two = list(context.recent_closed_trades[:2])
        if len(last_two) == 2 and all(t.pnl() < 0 for t in last_two):
            return "Trading after 2 consecutive losses"
        return None


DEFAULT_HEURISTICS: Tuple[RuleHeuristic, ...] = (
    RiskPercentHeuristic(),
    StopLossHeuristic(),
    MaxOpenPositionsHeuristic(),
    MarketHoursHeuristic(),
    OpeningClosingWindowHeuristic(),
    RewardRiskHeuristic(),
    RevengeTradeHeuristic(),
    BreakAfterLossesHeuristic(),
)


class RuleDetector:
    """Runs rule texts through an ordered set of heuristics."""

    def __init__(self, heuristics: Sequence[RuleHeuristic] = DEFAULT_HEURISTICS):
        self.heuristics = tuple(heuristics)

    def check_rule(self, rule: TradingRule, trade: Trade, context: RuleContext) -> Optional[str]:
        text = rule.rule_text.lower()
        for heuristic in self.heuristics:
            if not heuristic.matches(text):
                continue
            reason = heuristic.evaluate(trade, text, context)
            if reason:
                return reason
        return None

    def check_trade(
        self,
        trade: Trade,
        rules: Sequence[TradingRule],
        context: RuleContext,
    ) -> List[ViolationResult]:
        violations: List[ViolationResult] = []
        for rule in rules:
            if not rule.is_active:
                continue
            reason = self.check_rule(rule, trade, context)
            if reason:
                violations.append(ViolationResult(rule=rule, reason=reason))
        return violations


default_detector = RuleDetector()


def check_trade(trade: Trade, rules: Sequence[TradingRule], context: RuleContext) -> List[ViolationResult]:
    return default_detector.check_trade(trade, rules, context)


def rule_followed(rule: TradingRule, trade: Trade) -> bool:
    """
    Positive adherence check, independent of violation detection: a rule can
    be followed in one respect and violated in another on the same trade.
    """
    text = rule.rule_text.lower()

    if "stop" in text and trade.stop_loss:
        return True
    if ("journal" in text or "notes" in text) and len((trade.notes or "").strip()) >= MIN_JOURNAL_NOTES:
        return True
    if "emotion" in text and trade.emotions:
        return True

    ratio = reward_risk_ratio(trade)
    if ratio is not None:
        if "3:1" in text and ratio >= 3:
            return True
        if ("2:1" in text or "reward" in text) and ratio >= 2:
            return True
    return False


def followed_rules(trade: Trade, rules: Sequence[TradingRule]) -> List[TradingRule]:
    return [rule for rule in rules if rule.is_active and rule_followed(rule, trade)]
