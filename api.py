import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

import config
from shared.schemas.python.models import Achievement, Trade, TradingRule, UserGoal
from utils.achievements import check_and_unlock_achievements, gather_stats
from utils.check_ins import AlreadyCheckedInError, CheckInSubmission, perform_daily_check_in
from utils.logger import logger
from utils.onboarding_session import GoalInputs, OnboardingError, OnboardingSession, onboarding_state
from utils.progress_summary import ProgressSummary, get_progress_summary
from utils.progression import InvalidGoalError
from utils.supabase_auth import verify_supabase_token
from utils.supabase_client import SupabaseConfigurationError, SupabaseTableStore, TableStore
from utils.trade_journal import TradeCloseError, TradeNotFoundError, close_trade, save_trade
from utils.user_progress import ProgressNotFoundError, StaleProgressError
from version import CODENAME, __version__
from webhooks.supabase import router as supabase_webhook_router

# ---------------------------------------------------------------------------
# Security helpers
# ---------------------------------------------------------------------------


async def verify_api_key(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> None:
    """Guard routes with a Supabase JWT or optional API key."""
    claims: Optional[Dict[str, Any]] = None

    if authorization:
        try:
            claims = verify_supabase_token(authorization)
        except HTTPException:
            # Invalid JWT; fall back to API key check if configured.
            claims = None

    if claims:
        request.state.supabase_claims = claims
        return

    configured_key = getattr(config, "API_KEY", None)
    if configured_key:
        if x_api_key != configured_key:
            raise HTTPException(status_code=401, detail="Unauthorized")
        request.state.supabase_claims = None
        return

    # No Supabase claims and no API key configured: anonymous access.
    request.state.supabase_claims = None


async def get_authenticated_user_id(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> str:
    """Extract authenticated user ID from JWT or headers."""
    claims = getattr(request.state, "supabase_claims", None)

    if not claims and authorization:
        try:
            claims = verify_supabase_token(authorization)
        except HTTPException:
            claims = None

    if claims and "sub" in claims:
        return str(claims["sub"])

    if x_user_id:
        return x_user_id

    raise HTTPException(status_code=401, detail="Missing authentication context")


def get_store() -> TableStore:
    """Table store used by every route; overridden in tests."""
    return SupabaseTableStore()


# ---------------------------------------------------------------------------
# FastAPI app bootstrap
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])

app = FastAPI(title=config.SERVICE_NAME, version=__version__)
app.include_router(supabase_webhook_router)

# CORS settings
_allowed_origins = getattr(config, "ALLOWED_ORIGINS", [])
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins if _allowed_origins else ["*"],
    allow_credentials=bool(_allowed_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(InvalidGoalError)
@app.exception_handler(OnboardingError)
@app.exception_handler(TradeCloseError)
@app.exception_handler(ValidationError)
async def _bad_request_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(AlreadyCheckedInError)
async def _duplicate_check_in_handler(request: Request, exc: AlreadyCheckedInError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(StaleProgressError)
async def _stale_progress_handler(request: Request, exc: StaleProgressError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(ProgressNotFoundError)
@app.exception_handler(TradeNotFoundError)
async def _not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(SupabaseConfigurationError)
async def _store_unconfigured_handler(request: Request, exc: SupabaseConfigurationError) -> JSONResponse:
    logger.error("Table store not configured: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Database not available"})


@app.exception_handler(httpx.HTTPError)
async def _store_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    logger.error("Table store request failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Table store request failed"})


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

startup_time = time.time()


class HealthStatus(BaseModel):
    service: str
    version: str
    codename: str
    uptime_seconds: int
    store_status: str
    timestamp: str


@app.get("/api/health", response_model=HealthStatus, include_in_schema=False)
async def health_check(store: TableStore = Depends(get_store)) -> HealthStatus:
    uptime_seconds = int(time.time() - startup_time)
    try:
        await store.select("user_progress", columns="user_id", limit=1)
        store_status = "ok"
    except SupabaseConfigurationError:
        store_status = "not_configured"
    except httpx.HTTPError as error:
        store_status = f"error:{error.__class__.__name__}"

    return HealthStatus(
        service=config.SERVICE_NAME,
        version=__version__,
        codename=CODENAME,
        uptime_seconds=uptime_seconds,
        store_status=store_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ---------------------------------------------------------------------------
# Request / response payloads
# ---------------------------------------------------------------------------


class TradeRequest(BaseModel):
    symbol: str
    trade_type: str = "stock"
    direction: str
    entry_price: float
    exit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    target_price: Optional[float] = None
    strike_price: Optional[float] = None
    expiry_date: Optional[str] = None
    position_size: float
    status: str = "open"
    notes: Optional[str] = None
    emotions: List[str] = Field(default_factory=list)
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None


class ViolationOut(BaseModel):
    rule_id: Optional[str]
    rule: str
    reason: str


class UnitProgressOut(BaseModel):
    current_capital: float
    units_cracked: int
    new_units: int
    units_remaining: int


class SaveTradeResponse(BaseModel):
    trade: Trade
    violations: List[ViolationOut]
    followed_rule_ids: List[Optional[str]]
    progress: Optional[UnitProgressOut] = None


class CloseTradeRequest(BaseModel):
    exit_price: float
    close_size: Optional[float] = None
    exit_time: Optional[datetime] = None


class CloseTradeResponse(BaseModel):
    trade: Trade
    pnl: float
    closed_size: float
    remaining_size: float
    full_close: bool
    xp_earned: int
    spilled: bool
    progress: Optional[UnitProgressOut] = None


class CheckInResponse(BaseModel):
    xp_earned: int
    streak: int
    level: int
    leveled_up: bool
    streak_multiplier_before: float
    streak_multiplier: float
    new_achievements: List[Achievement]


class RuleSelection(BaseModel):
    rules: List[str]


class OnboardingSessionOut(BaseModel):
    current_step: str
    selected_rules: List[str]
    goal: Optional[GoalInputs] = None
    started_at: datetime


class OnboardingCompleteResponse(BaseModel):
    goal: UserGoal
    rules: List[TradingRule]
    level: int


def _session_out(session: OnboardingSession) -> OnboardingSessionOut:
    return OnboardingSessionOut(
        current_step=session.current_step,
        selected_rules=session.selected_rules,
        goal=session.goal,
        started_at=session.started_at,
    )


def _unit_progress(tracker) -> Optional[UnitProgressOut]:
    if tracker is None:
        return None
    return UnitProgressOut(
        current_capital=tracker.current_capital,
        units_cracked=tracker.units_cracked,
        new_units=tracker.new_units,
        units_remaining=tracker.units_remaining,
    )


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


@router.post("/trades", response_model=SaveTradeResponse, status_code=201)
async def create_trade(
    payload: TradeRequest,
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> SaveTradeResponse:
    trade = Trade(user_id=user_id, **payload.model_dump(exclude_none=True))
    result = await save_trade(store, trade)
    return SaveTradeResponse(
        trade=result.trade,
        violations=[
            ViolationOut(rule_id=v.rule.id, rule=v.rule.rule_text, reason=v.reason)
            for v in result.violations
        ],
        followed_rule_ids=[rule.id for rule in result.followed],
        progress=_unit_progress(result.tracker),
    )


@router.post("/trades/{trade_id}/close", response_model=CloseTradeResponse)
async def close_trade_endpoint(
    trade_id: str,
    payload: CloseTradeRequest,
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> CloseTradeResponse:
    result = await close_trade(
        store,
        user_id,
        trade_id,
        payload.exit_price,
        close_size=payload.close_size,
        exit_time=payload.exit_time,
    )
    return CloseTradeResponse(
        trade=result.trade,
        pnl=result.pnl,
        closed_size=result.closed_size,
        remaining_size=result.remaining_size,
        full_close=result.full_close,
        xp_earned=result.xp_earned,
        spilled=result.spilled,
        progress=_unit_progress(result.tracker),
    )


# ---------------------------------------------------------------------------
# Check-ins, achievements and progress
# ---------------------------------------------------------------------------


@router.post("/check-ins", response_model=CheckInResponse, status_code=201)
async def create_check_in(
    payload: CheckInSubmission,
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> CheckInResponse:
    result = await perform_daily_check_in(store, user_id, payload)
    return CheckInResponse(
        xp_earned=result.xp_earned,
        streak=result.streak,
        level=result.level,
        leveled_up=result.leveled_up,
        streak_multiplier_before=result.streak_multiplier_before,
        streak_multiplier=result.streak_multiplier,
        new_achievements=result.new_achievements,
    )


@router.post("/achievements/scan", response_model=List[Achievement])
async def scan_achievements(
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> List[Achievement]:
    stats = await gather_stats(store, user_id)
    return await check_and_unlock_achievements(store, user_id, stats)


@router.get("/progress", response_model=ProgressSummary)
async def read_progress(
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> ProgressSummary:
    return await get_progress_summary(store, user_id)


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------


@router.post("/onboarding/start", response_model=OnboardingSessionOut)
async def start_onboarding(user_id: str = Depends(get_authenticated_user_id)) -> OnboardingSessionOut:
    return _session_out(onboarding_state.start_session(user_id))


@router.post("/onboarding/rules", response_model=OnboardingSessionOut)
async def choose_onboarding_rules(
    payload: RuleSelection,
    user_id: str = Depends(get_authenticated_user_id),
) -> OnboardingSessionOut:
    return _session_out(onboarding_state.select_rules(user_id, payload.rules))


@router.post("/onboarding/goal", response_model=OnboardingSessionOut)
async def set_onboarding_goal(
    payload: GoalInputs,
    user_id: str = Depends(get_authenticated_user_id),
) -> OnboardingSessionOut:
    return _session_out(onboarding_state.set_goal(user_id, payload))


@router.post("/onboarding/complete", response_model=OnboardingCompleteResponse, status_code=201)
async def complete_onboarding(
    user_id: str = Depends(get_authenticated_user_id),
    store: TableStore = Depends(get_store),
) -> OnboardingCompleteResponse:
    result = await onboarding_state.complete(store, user_id)
    return OnboardingCompleteResponse(goal=result.goal, rules=result.rules, level=result.progress.level)


@router.delete("/onboarding", status_code=204)
async def cancel_onboarding(user_id: str = Depends(get_authenticated_user_id)) -> None:
    if onboarding_state.end_session(user_id) is None:
        raise HTTPException(status_code=404, detail="No onboarding in progress")


app.include_router(router)
