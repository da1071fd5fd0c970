"""FastAPI application exposing the wagering operations."""

from datetime import datetime, timezone
from typing import Generator, Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictInt
from sqlalchemy.orm import Session

from parimutuel_core.config.loader import load_config
from parimutuel_core.db.engine import get_session as _get_session, init_engine
from parimutuel_core.models import Bet, Market
from parimutuel_core.payments.sender import HttpPaymentSender
from parimutuel_core.wagering import (
    BetLifecycle,
    CollaboratorError,
    ConflictError,
    EventBus,
    InvalidRequestError,
    InvariantViolation,
    MarketResolver,
    NotFoundError,
    ResolutionReport,
    ResolutionTooEarlyError,
    create_market,
    ensure_user,
    get_market,
    get_odds,
    leaderboard,
    list_market_bets,
    list_markets,
    list_user_bets,
    platform_stats,
)

logger = structlog.get_logger("api")

app = FastAPI(
    title="Pari-mutuel Wagering API",
    description="Markets, bets, odds, resolution and payouts",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Load config once at startup
config = load_config()

events = EventBus()
_lifecycle = BetLifecycle(config.wagering, events=events)
_sender: HttpPaymentSender | None = None
_resolver: MarketResolver | None = None


def get_db() -> Generator[Session, None, None]:
    """Dependency to get DB session."""
    gen = _get_session()
    session = next(gen)
    try:
        yield session
    finally:
        try:
            next(gen)
        except StopIteration:
            pass


def get_lifecycle() -> BetLifecycle:
    return _lifecycle


def get_resolver() -> MarketResolver:
    if _resolver is None:
        raise RuntimeError("payment sender not initialised; application startup has not run")
    return _resolver


@app.on_event("startup")
async def startup_event():
    """Initialize the database engine and the payment sender."""
    global _sender, _resolver
    init_engine(config.database.url)
    _sender = HttpPaymentSender.from_config(config.payments)
    _resolver = MarketResolver(_sender, events=events)
    logger.info("Database engine initialized", payments_url=_sender.base_url)


@app.on_event("shutdown")
async def shutdown_event():
    """Close the payment sender's connection pool."""
    global _sender, _resolver
    if _sender is not None:
        _sender.close()
    _sender = None
    _resolver = None
    logger.info("Payment sender closed")


# ═══════════════════════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════════════════════


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "detail": str(exc)})


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": str(exc)})


@app.exception_handler(ResolutionTooEarlyError)
async def too_early_handler(request: Request, exc: ResolutionTooEarlyError):
    return JSONResponse(status_code=423, content={"error": "too_early", "detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(
        status_code=409,
        content={"error": "conflict", "type": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(InvariantViolation)
async def invariant_handler(request: Request, exc: InvariantViolation):
    logger.critical("invariant_violation", path=request.url.path, detail=str(exc))
    return JSONResponse(status_code=500, content={"error": "invariant_violation", "detail": str(exc)})


@app.exception_handler(CollaboratorError)
async def collaborator_handler(request: Request, exc: CollaboratorError):
    return JSONResponse(status_code=502, content={"error": "collaborator_failure", "detail": str(exc)})


# ═══════════════════════════════════════════════════════════════
# Serialisation
# ═══════════════════════════════════════════════════════════════


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _market_json(m: Market) -> dict:
    return {
        "id": m.id,
        "title": m.title,
        "category": m.category,
        "description": m.description,
        "closeTime": _iso(m.close_time),
        "status": m.status,
        "winningOutcomeId": m.winning_outcome_id,
        "outcomes": [{"id": o.id, "label": o.label, "pool": o.pool} for o in m.outcomes],
        "totalPool": sum(o.pool for o in m.outcomes),
        "resolvedAt": _iso(m.resolved_at),
        "cancelledAt": _iso(m.cancelled_at),
    }


def _bet_json(b: Bet) -> dict:
    return {
        "id": b.id,
        "userId": b.user_id,
        "marketId": b.market_id,
        "outcomeId": b.outcome_id,
        "stake": b.stake,
        "status": b.status.value,
        "createdAt": _iso(b.created_at),
        "confirmedAt": _iso(b.confirmed_at),
        "paymentReference": b.payment_reference,
        "payoutAmount": b.payout_amount,
        "payoutReference": b.payout_reference,
    }


def _report_json(r: ResolutionReport) -> dict:
    return {
        "marketId": r.market_id,
        "status": r.status,
        "winningOutcomeId": r.winning_outcome_id,
        "totalPool": r.total_pool,
        "netPool": r.net_pool,
        "platformFee": r.platform_fee,
        "totalDisbursed": r.total_disbursed,
        "pendingDisbursements": [s.bet_id for s in r.pending_disbursements],
        "settlements": [
            {
                "betId": s.bet_id,
                "userId": s.user_id,
                "outcomeId": s.outcome_id,
                "stake": s.stake,
                "status": s.status,
                "payoutAmount": s.payout_amount,
                "payoutReference": s.payout_reference,
                "error": s.error,
            }
            for s in r.settlements
        ],
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# ═══════════════════════════════════════════════════════════════
# Users & markets
# ═══════════════════════════════════════════════════════════════


class RegisterUserRequest(BaseModel):
    payout_address: str


class CreateMarketRequest(BaseModel):
    title: str
    category: str = "general"
    description: Optional[str] = None
    close_time: datetime
    outcomes: list[str]


@app.post("/api/users", status_code=201)
async def register_user(req: RegisterUserRequest, session: Session = Depends(get_db)):
    """Register (or look up) the user owning a payout address."""
    return {"id": ensure_user(session, req.payout_address)}


@app.post("/api/markets", status_code=201)
async def create_market_endpoint(req: CreateMarketRequest, session: Session = Depends(get_db)):
    market = create_market(
        session,
        title=req.title,
        category=req.category,
        close_time=req.close_time,
        outcome_labels=req.outcomes,
        description=req.description,
    )
    return _market_json(market)


@app.get("/api/markets")
async def list_markets_endpoint(status: Optional[str] = None, session: Session = Depends(get_db)):
    return {"markets": [_market_json(m) for m in list_markets(session, status=status)]}


@app.get("/api/markets/{market_id}")
async def get_market_endpoint(market_id: int, session: Session = Depends(get_db)):
    return _market_json(get_market(session, market_id))


@app.get("/api/markets/{market_id}/odds")
async def get_odds_endpoint(market_id: int, session: Session = Depends(get_db)):
    """Implied percentages per outcome label (display only)."""
    return {"marketId": market_id, "odds": get_odds(session, market_id)}


@app.get("/api/markets/{market_id}/bets")
async def list_market_bets_endpoint(
    market_id: int,
    status: Optional[str] = None,
    session: Session = Depends(get_db),
):
    return {"bets": [_bet_json(b) for b in list_market_bets(session, market_id, status=status)]}


@app.get("/api/users/{user_id}/bets")
async def list_user_bets_endpoint(user_id: int, session: Session = Depends(get_db)):
    return {"bets": [_bet_json(b) for b in list_user_bets(session, user_id)]}


@app.get("/api/leaderboard")
async def leaderboard_endpoint(limit: int = Query(10, ge=1, le=100), session: Session = Depends(get_db)):
    """Winners ranked by win rate, then wins, then winnings."""
    return {
        "leaderboard": [
            {
                "userId": e.user_id,
                "payoutAddress": e.payout_address,
                "totalBets": e.total_bets,
                "totalWins": e.total_wins,
                "totalWagered": e.total_wagered,
                "totalWinnings": e.total_winnings,
                "winRate": e.win_rate,
            }
            for e in leaderboard(session, limit=limit)
        ]
    }


@app.get("/api/stats")
async def platform_stats_endpoint(session: Session = Depends(get_db)):
    s = platform_stats(session)
    return {
        "totalBets": s.total_bets,
        "totalVolume": s.total_volume,
        "uniqueBettors": s.unique_bettors,
        "totalUsers": s.total_users,
        "totalPaidOut": s.total_paid_out,
        "totalFees": s.total_fees,
        "totalMarkets": s.total_markets,
        "resolvedMarkets": s.resolved_markets,
    }


# ═══════════════════════════════════════════════════════════════
# Bet lifecycle
# ═══════════════════════════════════════════════════════════════


class PlaceBetRequest(BaseModel):
    user_id: StrictInt
    market_id: StrictInt
    stake: StrictInt
    outcome_id: Optional[StrictInt] = None
    position: Optional[str] = None


class ConfirmBetRequest(BaseModel):
    payment_reference: str


@app.post("/api/bets", status_code=201)
def place_bet(
    req: PlaceBetRequest,
    session: Session = Depends(get_db),
    lifecycle: BetLifecycle = Depends(get_lifecycle),
):
    bet = lifecycle.place_bet(
        session,
        user_id=req.user_id,
        market_id=req.market_id,
        stake=req.stake,
        outcome_id=req.outcome_id,
        position=req.position,
    )
    return _bet_json(bet)


@app.post("/api/bets/{bet_id}/confirm")
def confirm_bet(
    bet_id: int,
    req: ConfirmBetRequest,
    session: Session = Depends(get_db),
    lifecycle: BetLifecycle = Depends(get_lifecycle),
):
    """Payment watcher callback. Safe to deliver more than once."""
    result = lifecycle.confirm_bet(session, bet_id, req.payment_reference)
    return {
        "betId": result.bet_id,
        "status": result.status,
        "alreadyConfirmed": result.already_confirmed,
        "paymentReference": result.payment_reference,
    }


@app.post("/api/bets/{bet_id}/expire")
def expire_bet(
    bet_id: int,
    session: Session = Depends(get_db),
    lifecycle: BetLifecycle = Depends(get_lifecycle),
):
    return _bet_json(lifecycle.expire_bet(session, bet_id))


# ═══════════════════════════════════════════════════════════════
# Resolution
# ═══════════════════════════════════════════════════════════════


class ResolveMarketRequest(BaseModel):
    winning_outcome_id: StrictInt
    force: bool = False


@app.post("/api/markets/{market_id}/resolve")
def resolve_market(
    market_id: int,
    req: ResolveMarketRequest,
    session: Session = Depends(get_db),
    resolver: MarketResolver = Depends(get_resolver),
):
    report = resolver.resolve(session, market_id, req.winning_outcome_id, force=req.force)
    return _report_json(report)


@app.post("/api/markets/{market_id}/cancel")
def cancel_market(
    market_id: int,
    session: Session = Depends(get_db),
    resolver: MarketResolver = Depends(get_resolver),
):
    return _report_json(resolver.cancel(session, market_id))


@app.post("/api/markets/{market_id}/resume")
def resume_market(
    market_id: int,
    session: Session = Depends(get_db),
    resolver: MarketResolver = Depends(get_resolver),
):
    """Finish an interrupted settlement and retry failed disbursements."""
    return _report_json(resolver.resume(session, market_id))
