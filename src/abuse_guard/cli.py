"""Operator command line: allow/deny lists, temporary blocks, detection runs.

    abuse-guard allow add 192.168.1.100 "Internal server"
    abuse-guard deny add 192.168.1.200 "Known attacker"
    abuse-guard block 192.168.1.201 60 "Abuse detected"
    abuse-guard unblock 192.168.1.201
    abuse-guard list temp_block
    abuse-guard status 192.168.1.100
    abuse-guard cleanup
    abuse-guard check [IP]
    abuse-guard monitor
    abuse-guard stats

Exit code 0 on success, 1 on validation errors or store failures.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from typing import NoReturn, TextIO

from abuse_guard.config import load_config
from abuse_guard.errors import StoreUnavailable, ValidationError
from abuse_guard.logging_config import setup_logging
from abuse_guard.models.policy import IPPolicyEntry, PolicyStatus
from abuse_guard.retention import run_cleanup
from abuse_guard.scheduler import PeriodicTask
from abuse_guard.services import Services, build_services
from abuse_guard.store.client import get_database, get_motor_client

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with 1, like every other failure."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="abuse-guard",
        description="IP allow/deny/temporary-block management and DDoS protection",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-error log output")
    parser.add_argument("-c", "--config", help="Path to security.yaml")
    parser.add_argument("--log-file", help="Also write logs to this file")

    commands = parser.add_subparsers(dest="command", required=True)

    for name, label in (("allow", "allow-list"), ("deny", "deny-list")):
        group = commands.add_parser(name, help=f"Manage the {label}")
        actions = group.add_subparsers(dest="action", required=True)
        add = actions.add_parser("add", help=f"Add IP to the {label}")
        add.add_argument("ip")
        add.add_argument("reason", nargs="?", default=f"Added to {label}")
        remove = actions.add_parser("remove", help=f"Remove IP from the {label}")
        remove.add_argument("ip")
        actions.add_parser("list", help=f"List {label} entries")

    block = commands.add_parser("block", help="Temporarily block an IP")
    block.add_argument("ip")
    block.add_argument("minutes", nargs="?", type=float, default=15.0)
    block.add_argument("reason", nargs="?", default="Temporary block")

    unblock = commands.add_parser("unblock", help="Remove temporary and deny-list blocks")
    unblock.add_argument("ip")

    list_cmd = commands.add_parser("list", help="List policy entries")
    list_cmd.add_argument(
        "type", nargs="?", default="all", choices=["all", "allow", "deny", "temp_block"]
    )

    status = commands.add_parser("status", help="Show the current disposition of an IP")
    status.add_argument("ip")

    commands.add_parser("cleanup", help="Delete expired temporary blocks")

    check = commands.add_parser("check", help="Run DDoS detection once")
    check.add_argument("ip", nargs="?")
    check.add_argument("--window", type=float, help="Detection window in seconds")
    check.add_argument("--threshold", type=float, help="Requests per second threshold")

    commands.add_parser("monitor", help="Run DDoS detection continuously")

    stats = commands.add_parser("stats", help="Show DDoS protection statistics")
    stats.add_argument("--hours", type=int, default=24)

    return parser


def _format_entry(entry: IPPolicyEntry) -> str:
    expires = entry.expires_at.isoformat(timespec="seconds") if entry.expires_at else "never"
    return (
        f"  {entry.address:<39} {entry.list_type:<10} {entry.reason} "
        f"(created {entry.created_at.isoformat(timespec='seconds')} by {entry.created_by}, "
        f"expires {expires})"
    )


def _entries(count: int) -> str:
    return f"{count} entry" if count == 1 else f"{count} entries"


def _print_entries(title: str, entries: list[IPPolicyEntry], out: TextIO) -> None:
    print(f"{title}:", file=out)
    if not entries:
        print("  (none)", file=out)
    for entry in entries:
        print(_format_entry(entry), file=out)


def _print_status(status: PolicyStatus, out: TextIO) -> None:
    labels = {"allowed": "NORMAL", "denied": "BLOCKED", "temp_blocked": "BLOCKED"}
    label = labels[status.decision.disposition]
    if status.entry is not None and status.entry.list_type == "allow":
        label = "ALLOW-LISTED"
    print(f"Status for IP: {status.address}", file=out)
    print(f"  Status: {label}", file=out)
    if status.entry is None:
        print("  No entries found", file=out)
    else:
        print("Details:", file=out)
        print(_format_entry(status.entry), file=out)


async def run_command(
    args: argparse.Namespace, services: Services, out: TextIO | None = None
) -> int:
    if out is None:
        out = sys.stdout
    policy = services.policy
    actor = getpass.getuser()

    if args.command in ("allow", "deny"):
        list_type = args.command
        if args.action == "add":
            entry = await policy.upsert(args.ip, list_type, args.reason, actor=actor)
            print(f"IP {entry.address} added to {list_type}-list: {entry.reason}", file=out)
        elif args.action == "remove":
            removed = await policy.remove(args.ip, [list_type])
            print(f"IP {args.ip} removed from {list_type}-list ({_entries(removed)})", file=out)
        else:
            _print_entries(f"{list_type.capitalize()}-listed IPs", await policy.list_entries(list_type), out)

    elif args.command == "block":
        entry = await policy.block(args.ip, args.minutes, args.reason, actor=actor)
        print(
            f"IP {entry.address} temporarily blocked for {args.minutes:g} minutes: {entry.reason}",
            file=out,
        )

    elif args.command == "unblock":
        removed = await policy.unblock(args.ip)
        print(f"IP {args.ip} unblocked ({_entries(removed)} removed)", file=out)

    elif args.command == "list":
        _print_entries(f"IP Management List ({args.type})", await policy.list_entries(args.type), out)

    elif args.command == "status":
        _print_status(await policy.status(args.ip), out)

    elif args.command == "cleanup":
        removed = await run_cleanup(policy)
        print(f"Cleaned up {removed} expired temporary block(s)", file=out)

    elif args.command == "check":
        report = await services.detector.check_and_block(args.ip, args.window, args.threshold)
        if not report.enabled:
            print("DDoS protection is disabled", file=out)
            return 0
        for detection in report.attacks:
            print(
                f"ATTACK {detection.address}: {detection.observed_rate:.3f} req/s "
                f"(threshold {detection.threshold:g}) - blocked",
                file=out,
            )
        if report.connections is not None and report.connections.exceeded:
            print(
                f"High concurrent connections: {report.connections.active_connections} "
                f"(threshold {report.connections.threshold})",
                file=out,
            )
        print(
            f"Checked {len(report.checked)} IP(s), skipped {len(report.skipped)}, "
            f"blocked {len(report.attacks)}",
            file=out,
        )
        if report.failed:
            print(f"Error: could not check {', '.join(report.failed)}", file=sys.stderr)
            return 1

    elif args.command == "monitor":
        interval = services.config.detection.check_interval_seconds
        task = PeriodicTask("ddos-monitor", services.detector.check_and_block, interval)
        print(f"Starting DDoS monitoring every {interval}s (Ctrl-C to stop)", file=out)
        await task.run_forever()

    elif args.command == "stats":
        stats = await services.detector.stats(args.hours)
        print(f"DDoS statistics (last {stats.hours}h):", file=out)
        print(f"  DDoS events:          {stats.ddos_events}", file=out)
        print(f"  Unique attacking IPs: {len(stats.attacking_addresses)}", file=out)
        last = stats.last_attack_at.isoformat(timespec="seconds") if stats.last_attack_at else "-"
        print(f"  Last attack:          {last}", file=out)
        _print_entries("Currently blocked IPs", stats.blocked[:20], out)

    return 0


async def _main_async(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    client = get_motor_client(config.mongo_uri, config.store.timeout_seconds)
    try:
        services = build_services(config, get_database(client, config.mongo_db))
        await services.ensure_indexes()
        return await run_command(args, services)
    finally:
        client.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        return asyncio.run(_main_async(args))
    except ValidationError as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except StoreUnavailable as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
