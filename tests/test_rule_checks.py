"""
Tests for utils/rule_checks.py

Keyword heuristics against free-text trading rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from shared.schemas.python.models import Trade, TradingRule
from utils.rule_checks import (
    RuleContext,
    RuleDetector,
    RuleHeuristic,
    StopLossHeuristic,
    check_trade,
    followed_rules,
    reward_risk_ratio,
    rule_followed,
)

UTC = timezone.utc


def make_trade(**overrides) -> Trade:
    fields = {
        "user_id": "u1",
        "symbol": "AAPL",
        "direction": "long",
        "entry_price": 100.0,
        "position_size": 10,
        "stop_loss": 95.0,
        "entry_time": datetime(2025, 3, 12, 15, 0, tzinfo=UTC),  # 11:00 ET
    }
    fields.update(overrides)
    return Trade(**fields)


def make_rule(text: str, **overrides) -> TradingRule:
    return TradingRule(id=overrides.pop("id", "r1"), user_id="u1", rule=text, **overrides)


def closed_loss(exit_time: datetime) -> Trade:
    return make_trade(status="closed", exit_price=90.0, exit_time=exit_time)


class TestStopLoss:

    def test_missing_stop_is_single_violation(self):
        trade = make_trade(stop_loss=None)
        violations = check_trade(trade, [make_rule("Always use stop loss orders")], RuleContext())
        assert len(violations) == 1
        assert violations[0].reason == "No stop loss set"

    def test_zero_stop_counts_as_missing(self):
        trade = make_trade(stop_loss=0)
        assert check_trade(trade, [make_rule("Always use stop loss orders")], RuleContext())

    def test_stop_present_passes(self):
        assert check_trade(make_trade(), [make_rule("Always use stop loss orders")], RuleContext()) == []


class TestRiskPercent:
    RULE = "Never risk more than 2% of account per trade"

    def test_over_risk(self):
        violations = check_trade(make_trade(), [make_rule(self.RULE)], RuleContext(goal_capital=1000))
        assert violations[0].reason == "Risked $50.00 (>20.00 max)"

    def test_within_risk(self):
        trade = make_trade(stop_loss=99.0, position_size=10)
        assert check_trade(trade, [make_rule(self.RULE)], RuleContext(goal_capital=1000)) == []

    def test_missing_stop_and_target_does_not_crash(self):
        trade = make_trade(stop_loss=None, target_price=None)
        assert check_trade(trade, [make_rule(self.RULE)], RuleContext()) == []
        check_trade(trade, [make_rule(self.RULE)], RuleContext(goal_capital=1000))


class TestMaxOpenPositions:
    RULE = "Maximum 3 open positions at once"

    @pytest.mark.parametrize("open_count,violated", [(2, False), (3, True), (5, True)])
    def test_open_count(self, open_count, violated):
        violations = check_trade(make_trade(), [make_rule(self.RULE)], RuleContext(open_trade_count=open_count))
        assert bool(violations) is violated
        if violated:
            assert violations[0].reason == f"{open_count} positions open (max 3)"

    def test_rule_without_number_never_fires(self):
        rule = make_rule("Maximum open positions is small")
        assert check_trade(make_trade(), [rule], RuleContext(open_trade_count=50)) == []


class TestMarketWindows:

    def test_pre_market_entry(self):
        trade = make_trade(entry_time=datetime(2025, 3, 12, 12, 0, tzinfo=UTC))
        violations = check_trade(trade, [make_rule("Only trade during market hours (9:30 AM - 4:00 PM)")], RuleContext())
        assert violations[0].reason == "Traded at 08:00 ET (outside market hours)"

    def test_weekend_entry(self):
        trade = make_trade(entry_time=datetime(2025, 3, 15, 15, 0, tzinfo=UTC))
        assert check_trade(trade, [make_rule("Only trade during market hours")], RuleContext())

    def test_falls_back_to_created_at(self):
        trade = make_trade(entry_time=None, created_at=datetime(2025, 3, 12, 21, 30, tzinfo=UTC))
        violations = check_trade(trade, [make_rule("Stick to market hours")], RuleContext())
        assert violations[0].reason == "Traded at 17:30 ET (outside market hours)"

    def test_no_time_at_all_is_permissive(self):
        trade = make_trade(entry_time=None)
        assert check_trade(trade, [make_rule("Stick to market hours")], RuleContext()) == []

    @pytest.mark.parametrize("utc_hour,utc_minute,violated", [
        (13, 30, True),   # 09:30 ET
        (13, 44, True),   # 09:44 ET
        (13, 45, False),  # 09:45 ET
        (19, 44, False),  # 15:44 ET
        (19, 45, True),   # 15:45 ET
        (20, 0, True),    # 16:00 ET
    ])
    def test_first_last_fifteen(self, utc_hour, utc_minute, violated):
        trade = make_trade(entry_time=datetime(2025, 3, 12, utc_hour, utc_minute, tzinfo=UTC))
        violations = check_trade(trade, [make_rule("No trading in first/last 15 minutes of market")], RuleContext())
        assert bool(violations) is violated


class TestRewardRisk:

    def test_ratio(self):
        assert reward_risk_ratio(make_trade(stop_loss=95, target_price=115)) == pytest.approx(3.0)
        assert reward_risk_ratio(make_trade(stop_loss=None, target_price=115)) is None
        assert reward_risk_ratio(make_trade(stop_loss=100, target_price=115)) is None

    def test_low_ratio_violates(self):
        trade = make_trade(stop_loss=95, target_price=105)
        violations = check_trade(trade, [make_rule("Must have 3:1 reward-to-risk ratio minimum")], RuleContext())
        assert violations[0].reason == "R:R ratio 1.00:1 (min 3:1)"

    def test_without_target_is_skipped(self):
        rule = make_rule("Must have 3:1 reward-to-risk ratio minimum")
        assert check_trade(make_trade(target_price=None), [rule], RuleContext()) == []


class TestLossSequences:

    def test_revenge_within_window(self, market_time):
        context = RuleContext(recent_closed_trades=(closed_loss(market_time - timedelta(minutes=10)),))
        violations = check_trade(make_trade(), [make_rule("No revenge trading after a loss")], context)
        assert violations[0].reason == "Possible revenge trade (within 30 min of loss)"

    def test_revenge_outside_window(self, market_time):
        context = RuleContext(recent_closed_trades=(closed_loss(market_time - timedelta(minutes=45)),))
        assert check_trade(make_trade(), [make_rule("No revenge trading")], context) == []

    def test_winning_previous_trade_is_fine(self, market_time):
        win = make_trade(status="closed", exit_price=120.0, exit_time=market_time - timedelta(minutes=5))
        context = RuleContext(recent_closed_trades=(win,))
        assert check_trade(make_trade(), [make_rule("No revenge trading")], context) == []

    def test_short_trade_loss_uses_direction(self, market_time):
        short_loss = make_trade(
            direction="short", status="closed", exit_price=110.0, exit_time=market_time - timedelta(minutes=5)
        )
        context = RuleContext(recent_closed_trades=(short_loss,))
        assert check_trade(make_trade(), [make_rule("No revenge trading")], context)

    def test_break_after_two_losses(self, market_time):
        context = RuleContext(
            recent_closed_trades=(
                closed_loss(market_time - timedelta(hours=2)),
                closed_loss(market_time - timedelta(hours=3)),
            )
        )
        violations = check_trade(make_trade(), [make_rule("Take a break after 2 consecutive losses")], context)
        assert violations[0].reason == "Trading after 2 consecutive losses"

    def test_first_matching_heuristic_wins(self, market_time):
        # "after" + "loss" also reads as a revenge rule, which is checked first
        context = RuleContext(
            recent_closed_trades=(
                closed_loss(market_time - timedelta(minutes=5)),
                closed_loss(market_time - timedelta(hours=3)),
            )
        )
        violations = check_trade(make_trade(), [make_rule("Take a break after 2 consecutive losses")], context)
        assert len(violations) == 1
        assert violations[0].reason == "Possible revenge trade (within 30 min of loss)"


class TestDetector:

    def test_unmatched_rule_is_silent(self):
        assert check_trade(make_trade(stop_loss=None), [make_rule("Be patient")], RuleContext()) == []

    def test_inactive_rules_skipped(self):
        rule = make_rule("Always use stop loss orders", is_active=False)
        assert check_trade(make_trade(stop_loss=None), [rule], RuleContext()) == []

    def test_one_result_per_violated_rule(self):
        rules = [
            make_rule("Always use stop loss orders", id="r1"),
            make_rule("Only trade during market hours", id="r2"),
        ]
        trade = make_trade(stop_loss=None, entry_time=datetime(2025, 3, 12, 23, 0, tzinfo=UTC))
        violations = check_trade(trade, rules, RuleContext())
        assert [v.rule.id for v in violations] == ["r1", "r2"]

    def test_custom_heuristic_set(self):
        detector = RuleDetector([StopLossHeuristic()])
        rule = make_rule("Only trade during market hours")
        trade = make_trade(entry_time=datetime(2025, 3, 12, 23, 0, tzinfo=UTC))
        assert detector.check_trade(trade, [rule], RuleContext()) == []

    def test_heuristic_must_implement_evaluate(self):
        class KeywordOnly(RuleHeuristic):
            name = "keyword_only"

            def matches(self, text):
                return "patient" in text

        with pytest.raises(TypeError):
            KeywordOnly()

    def test_extra_heuristic_plugs_in(self):
        class PatienceHeuristic(RuleHeuristic):
            name = "patience"

            def matches(self, text):
                return "patient" in text

            def evaluate(self, trade, text, context):
                return "Entered without waiting" if trade.stop_loss is None else None

        detector = RuleDetector([PatienceHeuristic()])
        violations = detector.check_trade(make_trade(stop_loss=None), [make_rule("Be patient")], RuleContext())
        assert [v.reason for v in violations] == ["Entered without waiting"]


class TestFollowedRules:

    def test_stop_rule_followed(self):
        assert rule_followed(make_rule("Always use stop loss orders"), make_trade())

    def test_journal_needs_ten_characters(self):
        rule = make_rule("Journal every trade with emotions")
        assert rule_followed(rule, make_trade(stop_loss=None, notes="Clean breakout entry"))
        assert not rule_followed(rule, make_trade(stop_loss=None, notes="ok"))

    def test_emotions_recorded(self):
        assert rule_followed(make_rule("Log every emotion"), make_trade(emotions=["calm"]))

    @pytest.mark.parametrize("target,text,expected", [
        (115, "3:1 minimum", True),
        (110, "3:1 minimum", False),
        (110, "Keep risk-reward ratio consistent", True),
        (105, "Keep risk-reward ratio consistent", False),
    ])
    def test_reward_risk_follow(self, target, text, expected):
        assert rule_followed(make_rule(text), make_trade(stop_loss=95, target_price=target)) is expected

    def test_follow_and_violation_are_independent(self):
        rule = make_rule("Always use stop loss orders and take 3:1 setups")
        trade = make_trade(stop_loss=95, target_price=105)
        assert rule_followed(rule, trade)
        violations = check_trade(trade, [rule], RuleContext())
        assert violations[0].reason == "R:R ratio 1.00:1 (min 3:1)"

    def test_followed_rules_skips_inactive(self):
        rules = [make_rule("Always use stop loss", id="a"), make_rule("Always use stop loss", id="b", is_active=False)]
        assert [r.id for r in followed_rules(make_trade(), rules)] == ["a"]
