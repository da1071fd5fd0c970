"""Market and user registry — creation, lookups, bet listings and aggregates."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from parimutuel_core.db.tables.bets import BetRow, PlatformFeeRow
from parimutuel_core.db.tables.markets import MarketRow, OutcomeRow
from parimutuel_core.db.tables.users import UserRow
from parimutuel_core.models import (
    Bet,
    BetStatus,
    LeaderboardEntry,
    Market,
    MarketStatus,
    Outcome,
    PlatformStats,
)
from parimutuel_core.wagering.classification import normalize_label
from parimutuel_core.wagering.errors import InvalidRequestError, NotFoundError

log = structlog.get_logger("markets")


def as_utc(ts: datetime) -> datetime:
    """Treat naive timestamps (as SQLite returns them) as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


# ── Users ─────────────────────────────────────────────────────


def ensure_user(session: Session, payout_address: str) -> int:
    """Upsert the user owning *payout_address* and return its ID."""
    address = payout_address.strip()
    if not address:
        raise InvalidRequestError("payout_address must not be empty")
    row = session.query(UserRow).filter(UserRow.payout_address == address).first()
    if row is not None:
        return row.id
    row = UserRow(payout_address=address, created_at=datetime.now(timezone.utc))
    session.add(row)
    session.commit()
    session.refresh(row)
    log.info("user_registered", user_id=row.id)
    return row.id


def load_user(session: Session, user_id: int) -> UserRow:
    row = session.get(UserRow, user_id)
    if row is None:
        raise NotFoundError("user", user_id)
    return row


# ── Markets ───────────────────────────────────────────────────


def create_market(
    session: Session,
    title: str,
    category: str,
    close_time: datetime,
    outcome_labels: list[str],
    description: str | None = None,
    now: datetime | None = None,
) -> Market:
    """Create an active market with its outcomes, all pools at zero."""
    now = now or datetime.now(timezone.utc)
    if not title.strip():
        raise InvalidRequestError("title must not be empty")
    labels = [label.strip() for label in outcome_labels]
    if len(labels) < 2:
        raise InvalidRequestError("a market needs at least two outcomes")
    if any(not label for label in labels):
        raise InvalidRequestError("outcome labels must not be empty")
    if len({normalize_label(label) for label in labels}) != len(labels):
        raise InvalidRequestError("outcome labels must be unique within a market")
    if as_utc(close_time) <= as_utc(now):
        raise InvalidRequestError("close_time must be in the future")

    market = MarketRow(
        title=title.strip(),
        category=category.strip() or "general",
        description=description,
        close_time=close_time,
        status=MarketStatus.ACTIVE.value,
        created_at=now,
    )
    session.add(market)
    session.flush()
    for label in labels:
        session.add(OutcomeRow(market_id=market.id, label=label, pool=0, created_at=now))
    session.commit()

    log.info("market_created", market_id=market.id, title=market.title, outcomes=labels)
    return get_market(session, market.id)


def load_market(session: Session, market_id: int) -> MarketRow:
    """Fetch a market row fresh from the database."""
    row = session.get(MarketRow, market_id, populate_existing=True)
    if row is None:
        raise NotFoundError("market", market_id)
    return row


def load_outcomes(session: Session, market_id: int) -> dict[int, str]:
    """Outcome id -> label, in creation order."""
    rows = session.execute(
        select(OutcomeRow.id, OutcomeRow.label)
        .where(OutcomeRow.market_id == market_id)
        .order_by(OutcomeRow.id)
    ).all()
    return {row.id: row.label for row in rows}


def _to_market(session: Session, row: MarketRow) -> Market:
    outcomes = session.execute(
        select(OutcomeRow)
        .where(OutcomeRow.market_id == row.id)
        .order_by(OutcomeRow.id)
        .execution_options(populate_existing=True)
    ).scalars().all()
    return Market(
        id=row.id,
        title=row.title,
        category=row.category,
        description=row.description,
        close_time=as_utc(row.close_time),
        status=row.status,
        winning_outcome_id=row.winning_outcome_id,
        outcomes=[Outcome.model_validate(o) for o in outcomes],
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        cancelled_at=row.cancelled_at,
    )


def get_market(session: Session, market_id: int) -> Market:
    return _to_market(session, load_market(session, market_id))


def list_markets(session: Session, status: str | None = None) -> list[Market]:
    query = select(MarketRow).order_by(MarketRow.id)
    if status:
        query = query.where(MarketRow.status == status)
    return [_to_market(session, row) for row in session.execute(query).scalars().all()]


# ── Bets ──────────────────────────────────────────────────────


def get_bet(session: Session, bet_id: int) -> Bet:
    row = session.get(BetRow, bet_id, populate_existing=True)
    if row is None:
        raise NotFoundError("bet", bet_id)
    return Bet.model_validate(row)


def list_user_bets(session: Session, user_id: int) -> list[Bet]:
    """Every bet a user placed, newest first."""
    load_user(session, user_id)
    rows = session.execute(
        select(BetRow).where(BetRow.user_id == user_id).order_by(BetRow.id.desc())
    ).scalars().all()
    return [Bet.model_validate(r) for r in rows]


def list_market_bets(session: Session, market_id: int, status: str | None = None) -> list[Bet]:
    load_market(session, market_id)
    query = select(BetRow).where(BetRow.market_id == market_id)
    if status:
        query = query.where(BetRow.status == status)
    rows = session.execute(query.order_by(BetRow.id)).scalars().all()
    return [Bet.model_validate(r) for r in rows]


# ── Aggregates ────────────────────────────────────────────────

# Stakes that actually reached a pool
_COUNTED_STATUSES = (BetStatus.CONFIRMED.value, BetStatus.WON.value, BetStatus.LOST.value)


def leaderboard(session: Session, limit: int = 10) -> list[LeaderboardEntry]:
    """Users with at least one win, best win rate first.

    Only confirmed or settled (won/lost) bets count. Ties break on number
    of wins, then total winnings, then user id.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidRequestError(f"limit must be a positive integer, got {limit!r}")

    won = BetRow.status == BetStatus.WON.value
    rows = session.execute(
        select(
            BetRow.user_id,
            UserRow.payout_address,
            func.count(BetRow.id).label("total_bets"),
            func.sum(case((won, 1), else_=0)).label("total_wins"),
            func.sum(BetRow.stake).label("total_wagered"),
            func.sum(case((won, func.coalesce(BetRow.payout_amount, 0)), else_=0)).label("total_winnings"),
        )
        .join(UserRow, UserRow.id == BetRow.user_id)
        .where(BetRow.status.in_(_COUNTED_STATUSES))
        .group_by(BetRow.user_id, UserRow.payout_address)
    ).all()

    entries = [
        LeaderboardEntry(
            user_id=row.user_id,
            payout_address=row.payout_address,
            total_bets=int(row.total_bets),
            total_wins=int(row.total_wins),
            total_wagered=int(row.total_wagered),
            total_winnings=int(row.total_winnings),
            # round(wins / bets * 100), half-up, in integers
            win_rate=(int(row.total_wins) * 200 + int(row.total_bets)) // (2 * int(row.total_bets)),
        )
        for row in rows
        if row.total_wins
    ]
    entries.sort(key=lambda e: (-e.win_rate, -e.total_wins, -e.total_winnings, e.user_id))
    return entries[:limit]


def platform_stats(session: Session) -> PlatformStats:
    """Platform-wide totals.

    Volume counts every stake that was ever paid in, including stakes later
    refunded on a cancelled market; expired pending bets never paid and are
    left out.
    """
    paid_in = or_(
        BetRow.status.in_(_COUNTED_STATUSES),
        (BetRow.status == BetStatus.REFUNDED.value) & BetRow.confirmed_at.is_not(None),
    )
    bets = session.execute(
        select(
            func.count(BetRow.id),
            func.coalesce(func.sum(BetRow.stake), 0),
            func.count(func.distinct(BetRow.user_id)),
        ).where(paid_in)
    ).one()
    paid_out = session.execute(
        select(func.coalesce(func.sum(BetRow.payout_amount), 0)).where(BetRow.status == BetStatus.WON.value)
    ).scalar()
    fees = session.execute(select(func.coalesce(func.sum(PlatformFeeRow.amount), 0))).scalar()
    total_markets = session.execute(select(func.count(MarketRow.id))).scalar()
    resolved_markets = session.execute(
        select(func.count(MarketRow.id)).where(MarketRow.status.like("resolved_%"))
    ).scalar()
    total_users = session.execute(select(func.count(UserRow.id))).scalar()

    return PlatformStats(
        total_bets=int(bets[0]),
        total_volume=int(bets[1]),
        unique_bettors=int(bets[2]),
        total_users=int(total_users),
        total_paid_out=int(paid_out),
        total_fees=int(fees),
        total_markets=int(total_markets),
        resolved_markets=int(resolved_markets),
    )
