"""
Pytest configuration and shared fixtures for journal engine tests.
"""

import copy
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from shared.schemas.python.models import UserGoal, UserProgress
from utils.supabase_client import _filter_value


class InMemoryTableStore:
    """TableStore kept in dicts; filters compare the way the REST layer encodes them."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        for row in rows:
            self.rows(table).append(copy.deepcopy(row))

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            if _filter_value(row.get(column)) != _filter_value(value):
                return False
        return True

    async def select(self, table, filters=None, *, columns="*", order=None, desc=False, limit=None):
        self.calls.append(("select", table, filters))
        found = [copy.deepcopy(row) for row in self.rows(table) if self._matches(row, filters)]
        if order:
            present = [row for row in found if row.get(order) is not None]
            missing = [row for row in found if row.get(order) is None]
            present.sort(key=lambda row: row[order], reverse=desc)
            found = present + missing
        if limit is not None:
            found = found[:limit]
        return found

    async def select_one(self, table, filters=None):
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table, payload):
        self.calls.append(("insert", table, payload))
        inserted = []
        for row in payload if isinstance(payload, list) else [payload]:
            stored = copy.deepcopy(row)
            stored.setdefault("id", str(uuid.uuid4()))
            self.rows(table).append(stored)
            inserted.append(copy.deepcopy(stored))
        return inserted

    async def update(self, table, values, filters):
        self.calls.append(("update", table, values, filters))
        changed = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                changed.append(copy.deepcopy(row))
        return changed

    async def upsert(self, table, payload):
        self.calls.append(("upsert", table, payload))
        result = []
        for row in payload if isinstance(payload, list) else [payload]:
            existing = next((r for r in self.rows(table) if row.get("id") and r.get("id") == row["id"]), None)
            if existing is None:
                result.extend(await self.insert(table, row))
            else:
                existing.update(copy.deepcopy(row))
                result.append(copy.deepcopy(existing))
        return result


class FailingTableStore(InMemoryTableStore):
    """Every read and write fails as if the store were unreachable."""

    def _fail(self, table):
        request = httpx.Request("GET", f"https://example.supabase.co/rest/v1/{table}")
        raise httpx.ConnectError("connection refused", request=request)

    async def select(self, table, filters=None, **kwargs):
        self._fail(table)

    async def insert(self, table, payload):
        self._fail(table)

    async def update(self, table, values, filters):
        self._fail(table)


USER_ID = "7f1c2b9e-0000-4000-8000-000000000001"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def store():
    """Fixture providing an empty in-memory table store."""
    return InMemoryTableStore()


@pytest.fixture
def failing_store():
    return FailingTableStore()


@pytest.fixture
def seed_progress(store, user_id):
    """Insert a progress row; keyword overrides go straight onto the record."""

    def _seed(**overrides) -> UserProgress:
        progress = UserProgress(user_id=user_id, **overrides)
        store.seed("user_progress", progress.model_dump(mode="json"))
        return progress

    return _seed


@pytest.fixture
def seed_goal(store, user_id):
    def _seed(**overrides) -> UserGoal:
        fields = {
            "id": "goal-1",
            "starting_capital": 1000.0,
            "current_capital": 1000.0,
            "target_percent_per_unit": 10.0,
            "total_units": 10,
            "units_remaining": 10,
        }
        fields.update(overrides)
        goal = UserGoal(user_id=user_id, **fields)
        store.seed("user_goals", goal.model_dump(mode="json"))
        return goal

    return _seed


@pytest.fixture
def market_time():
    """Wednesday 2025-03-12 11:00 New York (EDT)."""
    return datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def check_in_day():
    return date(2025, 3, 14)
