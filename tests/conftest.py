"""Shared test fixtures."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
import structlog
from sqlalchemy import BigInteger, Integer, JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from parimutuel_core.config.schema import WageringConfig
from parimutuel_core.db.base import Base
import parimutuel_core.db.tables  # noqa: F401
from parimutuel_core.wagering import (
    BetLifecycle,
    EventBus,
    MarketResolver,
    PaymentSendError,
    create_market,
    ensure_user,
)

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
CLOSE = NOW + timedelta(hours=1)
AFTER_CLOSE = NOW + timedelta(hours=2)


class FakePaymentSender:
    """Records every send; fails for addresses listed in ``failing``."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, int, str | None]] = []
        self.failing: set[str] = set()
        self._counter = 0

    def send(self, address: str, amount: int, memo: str | None = None) -> str:
        if address in self.failing:
            raise PaymentSendError(f"wallet unavailable for {address}")
        self._counter += 1
        self.sent.append((address, amount, memo))
        return f"tx{self._counter:04d}"

    def close(self) -> None:
        pass


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.contextvars.clear_contextvars()
    logging.getLogger().handlers.clear()


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created.

    Patches JSONB→JSON and BigInteger→Integer for SQLite compatibility.
    StaticPool keeps one connection so the API tests can share it across threads.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    # SQLite doesn't support schemas, JSONB, or BigInteger autoincrement
    for table in Base.metadata.tables.values():
        table.schema = None
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
            if isinstance(col.type, BigInteger):
                col.type = Integer()

    Base.metadata.create_all(engine)

    session = Session(engine)
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def wagering_config():
    return WageringConfig(min_stake=1, max_stake=1_000_000_000)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def lifecycle(wagering_config, events):
    return BetLifecycle(wagering_config, events=events)


@pytest.fixture
def sender():
    return FakePaymentSender()


@pytest.fixture
def resolver(sender, events):
    return MarketResolver(sender, events=events)


@pytest.fixture
def alice(db_session):
    return ensure_user(db_session, "ecash:alice")


@pytest.fixture
def bob(db_session):
    return ensure_user(db_session, "ecash:bob")


@pytest.fixture
def carol(db_session):
    return ensure_user(db_session, "ecash:carol")


@pytest.fixture
def yes_no_market(db_session):
    return create_market(
        db_session, "Will it rain tomorrow?", "weather", CLOSE, ["Yes", "No"], now=NOW,
    )


@pytest.fixture
def multi_market(db_session):
    return create_market(
        db_session, "Who wins the group?", "sports", CLOSE, ["Turkey", "Switzerland", "Other"], now=NOW,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def after_close():
    return AFTER_CLOSE


@pytest.fixture
def outcome():
    """Look up an outcome id by label: ``outcome(market, "Yes")``."""

    def _outcome(market, label):
        return next(o.id for o in market.outcomes if o.label == label)

    return _outcome


@pytest.fixture
def place_confirmed(db_session, lifecycle, outcome):
    """Place and confirm a bet before the close time; returns the bet id."""
    refs = iter(range(1, 10_000))

    def _place(user_id, market, label, stake, ref=None):
        bet = lifecycle.place_bet(
            db_session, user_id, market.id, stake, outcome_id=outcome(market, label), now=NOW,
        )
        lifecycle.confirm_bet(db_session, bet.id, ref or f"pay{next(refs):04d}", now=NOW)
        return bet.id

    return _place
