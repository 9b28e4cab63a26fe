import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status

import config
from utils.default_rules import initialize_default_rules
from utils.logger import log_database_event
from utils.supabase_client import SupabaseConfigurationError, SupabaseTableStore, TableStore
from utils.user_progress import ensure_progress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/supabase", tags=["supabase"])

SIGNUP_EVENTS = {"USER_CREATED", "USER_SIGNED_UP"}


def _validate_signature(body: bytes, signature: Optional[str]) -> None:
    """Validate Supabase webhook signature if a secret is configured."""
    secret = config.SUPABASE_WEBHOOK_SECRET
    if not secret:
        return
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Supabase signature header.",
        )

    provided = signature
    if signature.startswith("sha256="):
        provided = signature.split("=", 1)[1]

    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(provided, computed):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Supabase signature.",
        )


def _extract_user_id(payload: Dict[str, Any]) -> Optional[str]:
    record = payload.get("record") or payload.get("user") or {}
    return record.get("id")


def get_webhook_store() -> TableStore:
    return SupabaseTableStore()


async def bootstrap_new_user(store: TableStore, user_id: str) -> None:
    """Give a freshly signed-up user a progress row and the starter rules."""
    await ensure_progress(store, user_id)
    created = await initialize_default_rules(store, user_id)
    log_database_event("user_bootstrapped", user_id, f"{len(created)} default rules")


@router.post("/auth")
async def supabase_auth_webhook(
    request: Request,
    store: TableStore = Depends(get_webhook_store),
) -> Dict[str, str]:
    """Handle Supabase Auth webhooks for user lifecycle events."""
    body = await request.body()
    signature = (
        request.headers.get("supabase-signature")
        or request.headers.get("x-supabase-signature")
        or request.headers.get("x-signature")
    )
    _validate_signature(body, signature)

    try:
        payload = json.loads(body.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload.",
        ) from exc

    event_type = (
        str(
            payload.get("type")
            or payload.get("eventType")
            or payload.get("event_type")
            or ""
        ).upper()
    )
    user_id = _extract_user_id(payload)

    logger.info(
        "Supabase auth webhook received: type=%s, user_id=%s",
        event_type or "UNKNOWN",
        user_id,
    )

    if event_type in SIGNUP_EVENTS and user_id:
        try:
            await bootstrap_new_user(store, user_id)
        except SupabaseConfigurationError:
            logger.debug(
                "Supabase service role key not configured; skipping user bootstrap."
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Failed to bootstrap user_id=%s: %s", user_id, exc
            )

    return {"status": "acknowledged"}
