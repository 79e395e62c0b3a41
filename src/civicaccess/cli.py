"""Civic access CLI — command-line interface for mission access control.

Usage:
    python -m civicaccess.cli missions
    python -m civicaccess.cli check --mission identity-verification-deck12 \
        --user did:civic:alice --tier Verifier --trust 60 --replay wallet-overview-deck1
    python -m civicaccess.cli attempt --mission wallet-overview-deck1 \
        --user did:civic:alice --tier Citizen --trust 30
    python -m civicaccess.cli replay --mission identity-verification-deck12 \
        --user did:civic:alice --trace trace:replay:abc --prerequisite wallet-overview-deck1
    python -m civicaccess.cli feedback --mission consensus-governance-deck9 \
        --user did:civic:alice --badge verified_contributor --vote
    python -m civicaccess.cli ledger --user did:civic:alice --limit 10
    python -m civicaccess.cli stats

Environment (read from .env at the project root when present):
    CIVICACCESS_CONFIG_DIR, CIVICACCESS_DATA_DIR, CIVICACCESS_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from civicaccess.catalog.registry import MissionNotFoundError
from civicaccess.models.eligibility import AttemptResult
from civicaccess.models.mission import MissionStatus, UserTier
from civicaccess.models.user import InvalidUserContextError, ReplayRecord, UserContext
from civicaccess.persistence.event_log import EventLog
from civicaccess.policy.resolver import PolicyResolver
from civicaccess.unlock.orchestrator import ServiceResult, UnlockOrchestrator


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"
LEDGER_FILE = "access_ledger.jsonl"

logger = logging.getLogger(__name__)


def _make_orchestrator(config_dir: Path, data_dir: Path) -> UnlockOrchestrator:
    """Create an orchestrator whose ledger is journaled under data_dir."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / LEDGER_FILE)
    logger.debug("Ledger journal %s holds %d events", event_log.storage_path, event_log.count)
    return UnlockOrchestrator.from_resolver(resolver, event_log=event_log)


def _user_context(args: argparse.Namespace) -> UserContext:
    now = datetime.now(timezone.utc)
    replays = []
    for value in args.replay or []:
        mission_id, _, trace_hash = value.partition(":")
        replays.append(ReplayRecord(
            mission_id=mission_id,
            trace_hash=trace_hash or f"trace:cli:{mission_id}",
            validated_at=now,
            is_valid=True,
        ))
    return UserContext(
        user_id=args.user,
        user_tier=args.tier,
        trust_score=args.trust,
        replay_history=tuple(replays),
        feedback_badges=tuple(args.badge or []),
        verified_votes=args.votes,
        last_activity_at=now,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _report(result: ServiceResult) -> int:
    if result.success:
        _print_json(result.data)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_missions(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    _print_json([m.to_dict() for m in orchestrator.catalog.list_all()])
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    result = orchestrator.check_unlock_eligibility(args.mission, _user_context(args))
    _print_json(result.to_dict())
    return 0


def cmd_attempt(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    attempt = orchestrator.attempt_unlock(args.mission, _user_context(args))
    _print_json(attempt.to_dict())
    if attempt.result == AttemptResult.ERROR:
        print(f"Failed: {attempt.error}", file=sys.stderr)
        return 1
    return 0


def cmd_overview(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    overview = orchestrator.get_user_missions_overview(_user_context(args))
    _print_json(overview.to_dict())
    return 0


def cmd_replay(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    if args.prerequisite:
        result = orchestrator.validate_replay_completion(
            args.mission, args.user, args.prerequisite, args.trace,
        )
    else:
        result = orchestrator.update_via_replay(
            args.mission, args.user, args.trace, not args.invalid,
        )
    return _report(result)


def cmd_feedback(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    result = orchestrator.update_via_feedback(
        args.mission, args.user,
        feedback_badge=args.badge,
        vote_verified=True if args.vote else None,
    )
    return _report(result)


def cmd_ledger(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    entries = orchestrator.ledger.query(
        mission_id=args.mission,
        user_id=args.user,
        status=args.status,
        limit=args.limit,
    )
    _print_json([e.to_dict() for e in entries])
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    _print_json(orchestrator.ledger.statistics().to_dict())
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    orchestrator = _make_orchestrator(args.config, args.data_dir)
    _print_json(orchestrator.ledger.export_data())
    return 0


def _add_user_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--user", required=True, help="User ID")
    p.add_argument(
        "--tier", default=UserTier.CITIZEN.value,
        choices=[t.value for t in UserTier],
        help="User tier (default: Citizen)",
    )
    p.add_argument("--trust", type=float, default=25, help="Trust score 0-100 (default: 25)")
    p.add_argument(
        "--replay", action="append", metavar="MISSION[:HASH]",
        help="Validated replay of a prerequisite mission (repeatable)",
    )
    p.add_argument("--badge", action="append", help="Feedback badge ID (repeatable)")
    p.add_argument("--votes", type=int, default=0, help="Verified vote count")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="civic-access",
        description="Mission access control: eligibility checks and access ledger",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("CIVICACCESS_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path(os.getenv("CIVICACCESS_DATA_DIR", DEFAULT_DATA)),
        help="Directory holding the ledger journal (default: data/)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("CIVICACCESS_LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("missions", help="List mission definitions")

    p_check = sub.add_parser("check", help="Preview eligibility (writes nothing)")
    p_check.add_argument("--mission", required=True, help="Mission ID")
    _add_user_arguments(p_check)

    p_attempt = sub.add_parser("attempt", help="Attempt to unlock a mission")
    p_attempt.add_argument("--mission", required=True, help="Mission ID")
    _add_user_arguments(p_attempt)

    p_overview = sub.add_parser("overview", help="Eligibility across every mission")
    _add_user_arguments(p_overview)

    p_replay = sub.add_parser("replay", help="Credit a validated replay")
    p_replay.add_argument("--mission", required=True, help="Mission ID")
    p_replay.add_argument("--user", required=True, help="User ID")
    p_replay.add_argument("--trace", required=True, help="Replay trace reference")
    p_replay.add_argument(
        "--prerequisite",
        help="Require this mission to be unlocked for the user before crediting",
    )
    p_replay.add_argument("--invalid", action="store_true", help="Replay failed verification")

    p_feedback = sub.add_parser("feedback", help="Credit a feedback badge or verified vote")
    p_feedback.add_argument("--mission", required=True, help="Mission ID")
    p_feedback.add_argument("--user", required=True, help="User ID")
    p_feedback.add_argument("--badge", help="Feedback badge ID")
    p_feedback.add_argument("--vote", action="store_true", help="A verified vote was cast")

    p_ledger = sub.add_parser("ledger", help="Query ledger entries (newest first)")
    p_ledger.add_argument("--mission", help="Filter by mission ID")
    p_ledger.add_argument("--user", help="Filter by user ID")
    p_ledger.add_argument(
        "--status", choices=[s.value for s in MissionStatus], help="Filter by status",
    )
    p_ledger.add_argument("--limit", type=int, help="Maximum entries to return")

    sub.add_parser("stats", help="Ledger statistics")
    sub.add_parser("export", help="Export ledger entries, definitions and statistics")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(ROOT / ".env")
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "missions": cmd_missions,
        "check": cmd_check,
        "attempt": cmd_attempt,
        "overview": cmd_overview,
        "replay": cmd_replay,
        "feedback": cmd_feedback,
        "ledger": cmd_ledger,
        "stats": cmd_stats,
        "export": cmd_export,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (MissionNotFoundError, InvalidUserContextError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
