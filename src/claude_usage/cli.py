"""Command-line interface for claude-usage.

This module provides the main entry point and argument parsing for the
claude-usage CLI, a thin consumer of the client and poller.
"""

import argparse
import json
import logging
import platform
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from claude_usage._version import __version__
from claude_usage.api.client import UsageClient
from claude_usage.api.models import ProfileSnapshot, UsageSnapshot
from claude_usage.config.credentials import CredentialResolver
from claude_usage.config.settings import CONFIG_FILE, load_config
from claude_usage.errors import (
    APIError,
    ClaudeUsageError,
    ExitCode,
    format_error_for_user,
    get_exit_code,
)
from claude_usage.poller import ErrorState, UsagePoller, create_poller
from claude_usage.utils.time import format_relative_time

logger = logging.getLogger(__name__)

WINDOW_LABELS = {
    "five_hour": "Current session",
    "seven_day": "Weekly (all models)",
    "seven_day_sonnet": "Weekly (Sonnet)",
    "seven_day_opus": "Weekly (Opus)",
    "seven_day_oauth_apps": "Weekly (OAuth apps)",
}


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="claude-usage",
        description="Poll Claude Code subscription usage limits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  claude-usage              Show current usage and account
  claude-usage --json       Output usage and profile as JSON
  claude-usage --watch      Refresh every 30 seconds until Ctrl+C
  claude-usage --check      Diagnose credential sources
  claude-usage --config     Show effective configuration
""",
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output JSON instead of text")
    parser.add_argument(
        "--watch", "-w", action="store_true", help="Keep polling and print each refresh"
    )
    parser.add_argument(
        "--interval",
        type=int,
        metavar="SECONDS",
        help="Polling interval for --watch (default: 30)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        metavar="SECONDS",
        help="Request timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--check", action="store_true", help="Diagnose credential sources and exit"
    )
    parser.add_argument(
        "--config", action="store_true", help="Show effective configuration and exit"
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        metavar="PATH",
        help=f"Config file to load (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--audit",
        nargs="?",
        const="",
        metavar="PATH",
        help="Write an audit log of credential and API access (optional custom path)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log debug output to stderr"
    )
    parser.add_argument(
        "--version", "-V", action="store_true", help="Show version and system information"
    )
    return parser


def print_version() -> None:
    """Print version and system information."""
    print(f"claude-usage {__version__}")
    print(f"Python {platform.python_version()} on {platform.system()} {platform.release()}")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def format_usage(usage: UsageSnapshot, now: Optional[datetime] = None) -> List[str]:
    """Render each present usage window as one line."""
    lines = []
    for name, limit in usage.windows().items():
        label = WINDOW_LABELS.get(name, name)
        reset = format_relative_time(limit.resets_at, now=now)
        lines.append(f"{label:<22} {limit.utilization:5.1f}%  resets in {reset}")
    return lines


def format_profile(profile: ProfileSnapshot) -> List[str]:
    lines = []
    account = profile.account
    if account:
        name = account.display_name or account.full_name or account.email or "unknown"
        plan = account.plan_name
        lines.append(f"Account: {name}" + (f" ({plan})" if plan else ""))
    organization = profile.organization
    if organization and organization.name:
        tier = f" [{organization.rate_limit_tier}]" if organization.rate_limit_tier else ""
        lines.append(f"Organization: {organization.name}{tier}")
    return lines


def format_error_state(error: ErrorState) -> List[str]:
    lines = [f"Error: {error.message}"]
    if error.action_hint:
        lines.append(f"Hint: {error.action_hint}")
    return lines


def run_once(config: dict, as_json: bool = False) -> int:
    """Fetch usage and profile once and print them.

    Returns:
        Process exit code.
    """
    client = UsageClient.from_config(config)
    try:
        usage = client.fetch_usage()
        profile = client.fetch_profile()
    except APIError as e:
        print(format_error_for_user(e, verbose=True), file=sys.stderr)
        return get_exit_code(e)

    if as_json:
        print(json.dumps({"usage": usage.to_dict(), "profile": profile.to_dict()}, indent=2))
    else:
        for line in format_profile(profile) + format_usage(usage):
            print(line)
    return ExitCode.SUCCESS


def render_state(poller: UsagePoller, as_json: bool = False) -> None:
    """Print the poller state after a completed refresh."""
    if poller.is_loading:
        return
    state = poller.state
    stamp = datetime.now(timezone.utc).astimezone().strftime("%H:%M:%S")

    if as_json:
        print(
            json.dumps(
                {
                    "timestamp": stamp,
                    "usage": state.usage.to_dict() if state.usage else None,
                    "profile": state.profile.to_dict() if state.profile else None,
                    "error": (
                        {
                            "kind": state.error.kind,
                            "category": state.error.category.value,
                            "message": state.error.message,
                            "recoverable": state.error.recoverable,
                            "action_hint": state.error.action_hint,
                        }
                        if state.error
                        else None
                    ),
                }
            ),
            flush=True,
        )
        return

    print(f"[{stamp}]")
    if state.error:
        for line in format_error_state(state.error):
            print(line)
    if state.usage:
        for line in format_usage(state.usage):
            print(line)
    print(flush=True)


def run_watch(config: dict, as_json: bool = False) -> int:
    """Poll until interrupted, printing every refresh.

    When the poller pauses itself after repeated failures, waits for Enter
    before resuming.
    """
    poller = create_poller(config)
    poller.subscribe(lambda p: render_state(p, as_json))
    try:
        poller.start()
        while True:
            if poller.timer_active:
                time.sleep(1)
                continue
            print(
                "Automatic refresh paused after repeated failures. "
                "Press Enter to retry, Ctrl+C to quit.",
                file=sys.stderr,
            )
            input()
            poller.resume_auto_refresh()
    except (KeyboardInterrupt, EOFError):
        pass
    finally:
        poller.stop()
    return ExitCode.SUCCESS


def run_check(config: dict) -> int:
    """Print the status of every credential source."""
    resolver = CredentialResolver.from_config(config)
    statuses = resolver.diagnose()
    for status in statuses:
        if status.ok:
            expiry = "no expiry recorded"
            if status.expires_at is not None:
                expires = datetime.fromtimestamp(status.expires_at / 1000, timezone.utc)
                expiry = f"expires {expires.isoformat()}"
            print(f"{status.source:<14} ok ({expiry})")
            if status.message:
                print(f"{'':<14} warning: {status.message}")
        else:
            print(f"{status.source:<14} {status.reason}: {status.message}")

    if not any(status.ok for status in statuses):
        return ExitCode.AUTH_MISSING
    if resolver.is_expired():
        print("Token is expired or expires within 5 minutes. Run: claude login")
        return ExitCode.AUTH_EXPIRED
    return ExitCode.SUCCESS


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the claude-usage CLI."""
    from claude_usage.config.audit import enable_audit_logging

    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if args.version:
        print_version()
        return

    config = load_config(config_file=args.config_file)
    if args.interval is not None:
        config["poll_interval_seconds"] = max(5, args.interval)
    if args.timeout is not None:
        config["request_timeout_seconds"] = max(1, args.timeout)

    if args.config:
        print(json.dumps(config, indent=2))
        return

    if args.audit is not None:
        enable_audit_logging(Path(args.audit) if args.audit else None)

    try:
        if args.check:
            exit_code = run_check(config)
        elif args.watch:
            exit_code = run_watch(config, as_json=args.json)
        else:
            exit_code = run_once(config, as_json=args.json)
    except ClaudeUsageError as e:
        print(format_error_for_user(e, verbose=args.verbose), file=sys.stderr)
        exit_code = get_exit_code(e)

    sys.exit(int(exit_code))


__all__ = [
    "create_parser",
    "print_version",
    "format_usage",
    "format_profile",
    "format_error_state",
    "run_once",
    "run_watch",
    "run_check",
    "main",
]
