"""
agentgate command line.

Usage:
    agentgate status user-123
    agentgate check user-123
    agentgate sweep --max-age-minutes 120
    agentgate parse plan response.txt
    agentgate results user-123 --limit 5
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Optional

from . import __version__
from .config import ConfigError, apply_overrides, configure_logging, load_config
from .parsing import AgentKind, log_parse_result, parse_agent_output
from .services import Services, build_services
from .store import KeyCondition, StoreError

logger = logging.getLogger(__name__)


def get_services(args) -> Services:
    """Load config (file, then --db override) and build services."""
    config = load_config(args.config)
    if args.db:
        config = apply_overrides(config, {"db_path": args.db})
    return build_services(config)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# ============================================================================
# Commands
# ============================================================================

def cmd_status(args):
    """Show read-only usage of all four quotas."""

    async def run():
        services = get_services(args)
        try:
            summary = await services.gate.usage_summary(args.subject)
        finally:
            await services.close()
        return summary

    summary = asyncio.run(run())
    if args.json:
        print_json({kind.value: result.to_dict() for kind, result in summary.items()})
        return 0

    print(f"Usage for {args.subject}:")
    for kind, result in summary.items():
        flag = "" if result.allowed else "  [LIMIT REACHED]"
        degraded = "  (store unavailable)" if result.degraded else ""
        print(
            f"  {kind.value:<8} {result.current_usage}/{result.limit} "
            f"({result.percentage_used:.1f}%){flag}{degraded}"
        )
    return 0


def cmd_check(args):
    """Run the free-tier gate for a subject (consumes one request)."""

    async def run():
        services = get_services(args)
        try:
            return await services.gate.check_free_tier_limits(args.subject)
        finally:
            await services.close()

    decision = asyncio.run(run())
    if args.json:
        print_json(decision.to_dict())
    elif decision.allowed:
        print(f"Allowed: {args.subject}")
    else:
        print(f"Denied: {decision.message}")
    return 0 if decision.allowed else 2


def cmd_sweep(args):
    """Delete expired usage counters."""
    max_age = None
    if args.max_age_minutes is not None:
        max_age = timedelta(minutes=args.max_age_minutes)

    async def run():
        services = get_services(args)
        try:
            return await services.sweep_all(max_age)
        finally:
            await services.close()

    deleted = asyncio.run(run())
    for kind, count in deleted.items():
        print(f"  {kind.value:<8} {count} deleted")
    print(f"Total: {sum(deleted.values())}")
    return 0


def cmd_parse(args):
    """Parse an agent response from a file or stdin."""
    if args.file == "-":
        raw_text = sys.stdin.read()
    else:
        try:
            with open(args.file, encoding="utf-8") as f:
                raw_text = f.read()
        except OSError as e:
            print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
            return 1

    config = load_config(args.config)
    result = parse_agent_output(
        AgentKind(args.kind), raw_text, horizon_days=config.planning_horizon_days
    )
    log_parse_result(result, f"{args.kind} from {args.file}")
    print_json(result.to_dict())
    return 0 if result.success else 2


def cmd_results(args):
    """List a subject's most recent agent results."""

    async def run():
        services = get_services(args)
        try:
            page = await services.store.query(
                services.config.results_collection,
                KeyCondition(args.subject),
                limit=args.limit,
                index_hint="by_created",
                sort_descending=True,
            )
        finally:
            await services.close()
        return page.items

    items = asyncio.run(run())
    if args.json:
        print_json(items)
        return 0
    if not items:
        print(f"No results for {args.subject}")
    for item in items:
        print(
            f"  {item.get('createdAt', '?')}  {item.get('resultId')}  "
            f"{item.get('agentType')}  {item.get('status')}  "
            f"{item.get('tokensUsed', 0)} tokens"
        )
    return 0


# ============================================================================
# Entry point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentgate",
        description="Usage governance and output validation for LLM agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentgate status user-123
  agentgate check user-123 --json
  agentgate sweep --max-age-minutes 120
  agentgate parse grant response.txt
  cat response.txt | agentgate parse plan -
        """,
    )
    parser.add_argument("--config", "-c", help="YAML config file")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", help="Show quota usage for a subject")
    status_parser.add_argument("subject", help="Subject id")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    check_parser = subparsers.add_parser("check", help="Run the free-tier gate")
    check_parser.add_argument("subject", help="Subject id")
    check_parser.add_argument("--json", action="store_true", help="Output as JSON")
    check_parser.set_defaults(func=cmd_check)

    sweep_parser = subparsers.add_parser("sweep", help="Delete expired usage counters")
    sweep_parser.add_argument(
        "--max-age-minutes", type=float, help="Override each quota's expiry age"
    )
    sweep_parser.set_defaults(func=cmd_sweep)

    parse_parser = subparsers.add_parser("parse", help="Parse an agent response")
    parse_parser.add_argument("kind", choices=[k.value for k in AgentKind])
    parse_parser.add_argument("file", help="Response file, or - for stdin")
    parse_parser.set_defaults(func=cmd_parse)

    results_parser = subparsers.add_parser("results", help="List recent agent results")
    results_parser.add_argument("subject", help="Subject id")
    results_parser.add_argument("--limit", "-n", type=int, default=10)
    results_parser.add_argument("--json", action="store_true", help="Output as JSON")
    results_parser.set_defaults(func=cmd_results)

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        level = args.log_level or load_config(args.config).log_level
        configure_logging(level)
        return args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except StoreError as e:
        logger.error(f"Store error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
