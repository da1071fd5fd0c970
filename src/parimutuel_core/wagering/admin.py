"""Operator commands — resolve, cancel, resume and inspect markets from a shell."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict

import structlog

from parimutuel_core.config.loader import load_config
from parimutuel_core.db.engine import init_engine, session_scope
from parimutuel_core.logging.setup import bind_request_context, clear_request_context, setup_logging
from parimutuel_core.payments.sender import HttpPaymentSender
from parimutuel_core.wagering.errors import ConflictError, InvalidRequestError
from parimutuel_core.wagering.odds import get_odds
from parimutuel_core.wagering.resolver import MarketResolver, ResolutionReport

log = structlog.get_logger("admin")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pari-mutuel market administration")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Resolve a market and pay the winners")
    resolve.add_argument("market_id", type=int)
    resolve.add_argument("winning_outcome_id", type=int)
    resolve.add_argument("--force", action="store_true", help="Resolve before the close time")

    cancel = sub.add_parser("cancel", help="Void a market and refund every stake")
    cancel.add_argument("market_id", type=int)

    resume = sub.add_parser("resume", help="Finish settlement and retry failed payments")
    resume.add_argument("market_id", type=int)

    odds = sub.add_parser("odds", help="Print current odds")
    odds.add_argument("market_id", type=int)
    return parser


def _report_to_dict(report: ResolutionReport) -> dict:
    data = asdict(report)
    data["pending_disbursements"] = [s.bet_id for s in report.pending_disbursements]
    return data


def _run(args: argparse.Namespace, session, resolver: MarketResolver) -> dict:
    if args.command == "odds":
        return get_odds(session, args.market_id)
    if args.command == "resolve":
        report = resolver.resolve(session, args.market_id, args.winning_outcome_id, force=args.force)
    elif args.command == "cancel":
        report = resolver.cancel(session, args.market_id)
    else:
        report = resolver.resume(session, args.market_id)
    return _report_to_dict(report)


def main(argv: list[str] | None = None) -> int:
    """Run one admin command; returns the process exit code."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    setup_logging(level=config.logging.level, log_format=config.logging.format, service="admin")
    init_engine(config.database.url)
    bind_request_context(command=args.command, market_id=args.market_id)

    sender = HttpPaymentSender.from_config(config.payments)
    resolver = MarketResolver(sender)
    try:
        with session_scope() as session:
            output = _run(args, session, resolver)
    except (InvalidRequestError, ConflictError) as exc:
        log.error("admin_command_rejected", error=str(exc))
        return 1
    finally:
        sender.close()
        clear_request_context()

    print(json.dumps(output, indent=2, default=str))
    return 0
