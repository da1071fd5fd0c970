"""Wagering error taxonomy.

Three kinds of failure are kept apart so callers can tell them apart:

* ``InvalidRequestError`` — bad input, nothing was changed.
* ``ConflictError`` — the request is well-formed but the current state
  forbids it (already resolved, too early, late payment, ...).
* ``InvariantViolation`` — the stored data is inconsistent. Fatal: the
  operation halts and nothing tries to repair it.

Idempotent repeats (confirming a confirmed bet) are not errors at all;
they come back as results flagged ``already_confirmed``.
"""

from __future__ import annotations


class WageringError(Exception):
    """Base class for every error raised by the wagering engine."""


# ── Validation ────────────────────────────────────────────────


class InvalidRequestError(WageringError):
    """Input rejected before any state was touched."""


class NotFoundError(InvalidRequestError):
    """Referenced market, outcome, bet or user does not exist."""

    def __init__(self, kind: str, ident: object) -> None:
        super().__init__(f"{kind} {ident!r} not found")
        self.kind = kind
        self.ident = ident


class MarketNotAcceptingBetsError(InvalidRequestError):
    """Market is not active or its close time has passed."""


# ── Conflicts ─────────────────────────────────────────────────


class ConflictError(WageringError):
    """Request is valid but the current state forbids it."""


class MarketAlreadySettledError(ConflictError):
    """Market already left the active state (resolved or cancelled)."""

    def __init__(self, market_id: int, status: str) -> None:
        super().__init__(f"market {market_id} is already {status}")
        self.market_id = market_id
        self.status = status


class ResolutionTooEarlyError(ConflictError):
    """Close time not reached and the caller did not force resolution."""


class LatePaymentError(ConflictError):
    """Payment arrived after the market closed; left for manual reconciliation."""


class BetNotPendingError(ConflictError):
    """Bet is in a state that does not allow the requested transition."""

    def __init__(self, bet_id: int, status: str) -> None:
        super().__init__(f"bet {bet_id} is {status}")
        self.bet_id = bet_id
        self.status = status


class DuplicatePaymentReferenceError(ConflictError):
    """Payment reference is already attached to a different bet."""


# ── Invariants ────────────────────────────────────────────────


class InvariantViolation(WageringError):
    """Stored state is inconsistent. Never retried, never repaired."""


# ── Collaborators ─────────────────────────────────────────────


class CollaboratorError(WageringError):
    """An external collaborator failed."""


class PaymentSendError(CollaboratorError):
    """The payment sender could not disburse a payout or refund."""
