"""Job escrow CLI — command-line interface for the marketplace.

Usage:
    python -m jobescrow.cli status
    python -m jobescrow.cli fund --account alice --amount 500 --token USDC
    python -m jobescrow.cli post-job --client alice --title "Logo" --price 100 --token USDC --hours 48
    python -m jobescrow.cli accept-job --id 1 --caller bob
    python -m jobescrow.cli submit-work --id 1 --caller bob
    python -m jobescrow.cli confirm --id 1 --caller alice
    python -m jobescrow.cli auto-release --id 1 --caller anyone
    python -m jobescrow.cli list-jobs --state open
    python -m jobescrow.cli check-invariants

Amounts are given in display units ("12.5") and converted with the
token's decimals.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from jobescrow.compensation.tokens import to_base_units
from jobescrow.config import DEFAULT_CONFIG_DIR, ROOT, MarketplaceConfig
from jobescrow.models.job import JobState
from jobescrow.persistence.event_log import EventLog
from jobescrow.persistence.state_store import StateStore
from jobescrow.service import MarketplaceService, ServiceResult


DEFAULT_DATA = ROOT / "data"


def _make_service(config_dir: Path, data_dir: Path) -> MarketplaceService:
    """Create a MarketplaceService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    config = MarketplaceConfig.load(config_dir)
    return MarketplaceService(
        config,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _units(config: MarketplaceConfig, amount: str, token: str) -> int:
    decimals = config.tokens.get(token).decimals
    return to_base_units(amount, decimals)


def _report(result: ServiceResult, label: str) -> int:
    if result.success:
        print(f"{label}:")
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    code = result.data.get("error_code")
    prefix = f"Failed ({code})" if code else "Failed"
    print(f"{prefix}: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_fund(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    try:
        amount = _units(service.config, args.amount, args.token)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    return _report(service.fund_account(args.account, amount, args.token), "Funded")


def cmd_balance(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(service.balance(args.account, args.token))
    return 0


def cmd_post_job(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    try:
        price = _units(service.config, args.price, args.token)
        if args.deadline:
            deadline_utc = datetime.fromisoformat(args.deadline)
            if deadline_utc.tzinfo is None:
                deadline_utc = deadline_utc.replace(tzinfo=timezone.utc)
        else:
            deadline_utc = datetime.now(timezone.utc) + timedelta(hours=args.hours)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    result = service.post_job(
        client=args.client,
        title=args.title,
        description=args.description,
        price=price,
        deadline_utc=deadline_utc,
        token=args.token,
        reference=args.reference,
    )
    return _report(result, "Posted job")


def cmd_accept_job(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.accept_job(args.id, args.caller), "Accepted job")


def cmd_submit_work(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.submit_work(args.id, args.caller), "Work submitted")


def cmd_confirm(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.confirm_completion(args.id, args.caller), "Payment released")


def cmd_auto_release(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.auto_release(args.id, args.caller), "Funds auto released")


def cmd_show_job(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    job = service.get_job(args.id)
    if job is None:
        print(f"Failed (not_found): Job not found: {args.id}", file=sys.stderr)
        return 1
    if args.caller:
        job["available_actions"] = service.available_actions(args.id, args.caller)
    print(json.dumps(job, indent=2))
    return 0


def cmd_list_jobs(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    if args.actor:
        jobs = service.jobs_for(args.actor)
    else:
        jobs = service.list_jobs(JobState(args.state) if args.state else None)
    if not jobs:
        print("No jobs posted yet.")
        return 0
    for job in jobs:
        print(
            f"#{job['job_id']:<4} {job['status']:<12} "
            f"{job.get('price_display', job['price'])} {job['payment_token']:<6} "
            f"{job['title']}"
        )
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run configuration invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobescrow",
        description="Escrow job marketplace CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: data/)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log engine activity")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show marketplace status")

    p_fund = sub.add_parser("fund", help="Credit an account (in-memory ledger)")
    p_fund.add_argument("--account", required=True)
    p_fund.add_argument("--amount", required=True, help="Amount in display units")
    p_fund.add_argument("--token", default="USDC")

    p_bal = sub.add_parser("balance", help="Show an account balance in base units")
    p_bal.add_argument("--account", required=True)
    p_bal.add_argument("--token", default="USDC")

    p_post = sub.add_parser("post-job", help="Post a job and escrow its price")
    p_post.add_argument("--client", required=True, help="Client identity")
    p_post.add_argument("--title", required=True)
    p_post.add_argument("--description", default="")
    p_post.add_argument("--price", required=True, help="Price in display units")
    p_post.add_argument("--token", default="USDC")
    deadline_group = p_post.add_mutually_exclusive_group()
    deadline_group.add_argument("--deadline", help="ISO-8601 deadline (UTC if no offset)")
    deadline_group.add_argument(
        "--hours", type=float, default=72.0,
        help="Deadline as hours from now (default: 72)",
    )
    p_post.add_argument("--reference", help="Idempotency reference for the deposit")

    for name, help_text in (
        ("accept-job", "Accept an open job"),
        ("submit-work", "Submit work for an accepted job"),
        ("confirm", "Confirm completion and release payment"),
        ("auto-release", "Release payment after the deadline"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--id", type=int, required=True, help="Job ID")
        p.add_argument("--caller", required=True, help="Caller identity")

    p_show = sub.add_parser("show-job", help="Show a job")
    p_show.add_argument("--id", type=int, required=True, help="Job ID")
    p_show.add_argument("--caller", help="List the actions this caller can take")

    p_list = sub.add_parser("list-jobs", help="List jobs")
    p_list.add_argument("--state", choices=[s.value for s in JobState])
    p_list.add_argument("--actor", help="Only jobs where this identity is client or worker")

    sub.add_parser("check-invariants", help="Validate marketplace configuration")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "fund": cmd_fund,
        "balance": cmd_balance,
        "post-job": cmd_post_job,
        "accept-job": cmd_accept_job,
        "submit-work": cmd_submit_work,
        "confirm": cmd_confirm,
        "auto-release": cmd_auto_release,
        "show-job": cmd_show_job,
        "list-jobs": cmd_list_jobs,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
