from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

import config

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class SupabaseConfigurationError(RuntimeError):
    """Raised when Supabase credentials are missing."""


class TableStore(Protocol):
    """Table-style CRUD with equality filters, as the engine relies on it."""

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]: ...

    async def select_one(self, table: str, filters: Optional[Filters] = None) -> Optional[Row]: ...

    async def insert(self, table: str, payload: Row | List[Row]) -> List[Row]: ...

    async def update(self, table: str, values: Row, filters: Filters) -> List[Row]: ...

    async def upsert(self, table: str, payload: Row | List[Row]) -> List[Row]: ...


def _headers(key: str, prefer: Optional[Iterable[str]] = None) -> Dict[str, str]:
    header = {
        "apikey": key,
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if prefer:
        header["Prefer"] = ", ".join(prefer)
    return header


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    if hasattr(value, "isoformat"):
        return f"eq.{value.isoformat()}"
    return f"eq.{value}"


def build_params(
    filters: Optional[Filters] = None,
    *,
    columns: str = "*",
    order: Optional[str] = None,
    desc: bool = False,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Translate equality filters and ordering into PostgREST query params."""
    params: Dict[str, Any] = {"select": columns}
    for column, value in (filters or {}).items():
        params[column] = _filter_value(value)
    if order:
        params["order"] = f"{order}.{'desc' if desc else 'asc'}"
    if limit is not None:
        params["limit"] = limit
    return params


def _rows_from(response: httpx.Response) -> List[Row]:
    if not response.content:
        return []
    data = response.json()
    if isinstance(data, dict):
        # REST can return {"data": [...]} depending on headers
        return data.get("data", [])
    if isinstance(data, list):
        return data
    return []


class SupabaseTableStore:
    """TableStore backed by the Supabase REST endpoint using the service role."""

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url if url is not None else config.SUPABASE_URL or "").rstrip("/")
        self.key = service_role_key if service_role_key is not None else config.SUPABASE_SERVICE_ROLE_KEY
        self.timeout = timeout if timeout is not None else config.SUPABASE_TIMEOUT
        self._transport = transport

    def _require_config(self) -> None:
        if not self.url or not self.key:
            raise SupabaseConfigurationError(
                "Supabase URL/service role key not configured. "
                "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
            )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _endpoint(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, table: str) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Supabase %s failed: table=%s status=%s body=%s",
                method,
                table,
                exc.response.status_code,
                exc.response.text,
            )
            raise

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Fetch rows from a Supabase table."""
        self._require_config()
        params = build_params(filters, columns=columns, order=order, desc=desc, limit=limit)
        async with self._client() as client:
            response = await client.get(self._endpoint(table), headers=_headers(self.key), params=params)
        self._raise_for_status(response, "GET", table)
        return _rows_from(response)

    async def select_one(self, table: str, filters: Optional[Filters] = None) -> Optional[Row]:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def _post(self, table: str, payload: Row | List[Row], *, upsert: bool) -> List[Row]:
        self._require_config()
        rows: List[Row] = payload if isinstance(payload, list) else [payload]
        if not rows:
            return []

        prefer: List[str] = ["return=representation"]
        if upsert:
            prefer.append("resolution=merge-duplicates")

        async with self._client() as client:
            response = await client.post(
                self._endpoint(table),
                json=rows,
                headers=_headers(self.key, prefer),
            )
        self._raise_for_status(response, "POST", table)
        return _rows_from(response)

    async def insert(self, table: str, payload: Row | List[Row]) -> List[Row]:
        return await self._post(table, payload, upsert=False)

    async def upsert(self, table: str, payload: Row | List[Row]) -> List[Row]:
        return await self._post(table, payload, upsert=True)

    async def update(self, table: str, values: Row, filters: Filters) -> List[Row]:
        """PATCH rows matching ``filters``; returns the rows that were changed."""
        self._require_config()
        if not filters:
            raise ValueError("Refusing to update without filters")

        params = {column: _filter_value(value) for column, value in filters.items()}
        async with self._client() as client:
            response = await client.patch(
                self._endpoint(table),
                json=values,
                params=params,
                headers=_headers(self.key, ["return=representation"]),
            )
        self._raise_for_status(response, "PATCH", table)
        return _rows_from(response)


__all__ = [
    "Row",
    "Filters",
    "TableStore",
    "SupabaseTableStore",
    "SupabaseConfigurationError",
    "build_params",
]
