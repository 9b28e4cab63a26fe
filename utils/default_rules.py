"""Starter rule catalogue offered during onboarding and on first visit to the rules page."""

import logging
from typing import Dict, Iterable, List, Optional

from shared.schemas.python.models import TradingRule
from utils.logger import log_user_action
from utils.supabase_client import TableStore

logger = logging.getLogger(__name__)

DEFAULT_RULES: Dict[str, List[str]] = {
    "Risk Management": [
        "Never risk more than 2% of account per trade",
        "Always use stop loss orders",
        "Don't add to losing positions",
        "Maximum 3 open positions at once",
    ],
    "Entry Rules": [
        "Wait for confirmation before entering",
        "Only trade during market hours (9:30 AM - 4:00 PM)",
        "No trading in first/last 15 minutes of market",
        "Must have 3:1 reward-to-risk ratio minimum",
    ],
    "Exit Rules": [
        "Take profits at predetermined targets",
        "Move stop to breakeven after 50% profit",
        "Exit immediately if thesis is invalidated",
        "Don't hold overnight unless planned",
    ],
    "Psychology": [
        "No revenge trading after a loss",
        "Take a break after 2 consecutive losses",
        "Don't trade when emotional or stressed",
        "Journal every trade with emotions",
    ],
    "General": [
        "Follow the trading plan always",
        "Review trades weekly",
        "No FOMO trading",
        "Keep risk-reward ratio consistent",
    ],
}


def all_default_rules() -> List[Dict[str, str]]:
    return [
        {"rule": text, "category": category}
        for category, texts in DEFAULT_RULES.items()
        for text in texts
    ]


def category_for(rule_text: str) -> Optional[str]:
    for category, texts in DEFAULT_RULES.items():
        if rule_text in texts:
            return category
    return None


async def insert_rules(store: TableStore, user_id: str, rules: Iterable[Dict[str, str]]) -> List[TradingRule]:
    payload = [
        TradingRule(
            user_id=user_id,
            rule=entry["rule"],
            category=entry.get("category"),
        ).model_dump(mode="json", by_alias=True, exclude_none=True)
        for entry in rules
    ]
    if not payload:
        return []
    rows = await store.insert("trading_rules", payload)
    return [TradingRule.model_validate(row) for row in rows]


async def initialize_default_rules(store: TableStore, user_id: str) -> List[TradingRule]:
    """Seed the full catalogue unless the user already has rules."""
    existing = await store.select("trading_rules", {"user_id": user_id}, columns="id", limit=1)
    if existing:
        logger.debug("User %s already has rules; skipping defaults", user_id)
        return []

    created = await insert_rules(store, user_id, all_default_rules())
    log_user_action(user_id, "default_rules_initialized", f"{len(created)} rules")
    return created
