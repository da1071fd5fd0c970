"""In-process event bus — explicit notification of committed state changes.

Subscribers are plain callables. Events are published only after the state
change they describe has been committed, so a subscriber may safely re-read
the database. A failing subscriber is logged and never affects the operation
that published the event.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

import structlog

log = structlog.get_logger("events")


@dataclass(frozen=True)
class StakeCommitted:
    market_id: int
    outcome_id: int
    amount: int


@dataclass(frozen=True)
class StakeRemoved:
    market_id: int
    outcome_id: int
    amount: int


@dataclass(frozen=True)
class BetConfirmed:
    bet_id: int
    market_id: int
    payment_reference: str


@dataclass(frozen=True)
class BetSettled:
    bet_id: int
    market_id: int
    status: str
    payout_amount: int


@dataclass(frozen=True)
class MarketResolved:
    market_id: int
    status: str
    winning_outcome_id: int


@dataclass(frozen=True)
class MarketCancelled:
    market_id: int


@dataclass(frozen=True)
class PayoutSent:
    bet_id: int
    amount: int
    payout_reference: str


@dataclass(frozen=True)
class PayoutFailed:
    bet_id: int
    amount: int
    error: str


Event = (
    StakeCommitted
    | StakeRemoved
    | BetConfirmed
    | BetSettled
    | MarketResolved
    | MarketCancelled
    | PayoutSent
    | PayoutFailed
)
Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out to subscribers, optionally filtered by event type."""

    def __init__(self) -> None:
        self._subscribers: dict[type | None, list[Subscriber]] = defaultdict(list)

    def subscribe(self, callback: Subscriber, event_type: type | None = None) -> None:
        """Register *callback* for *event_type*, or for every event when None."""
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, callback: Subscriber, event_type: type | None = None) -> None:
        subscribers = self._subscribers.get(event_type, [])
        if callback in subscribers:
            subscribers.remove(callback)

    def publish(self, event: Event) -> None:
        for callback in [*self._subscribers.get(type(event), []), *self._subscribers.get(None, [])]:
            try:
                callback(event)
            except Exception:
                log.exception("subscriber_error", event_type=type(event).__name__)
