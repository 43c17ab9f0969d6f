"""
Graph Audit Tools — command-line entry point

Usage:
    graph-audit audit-licenses                 # shared mailboxes holding licenses
    graph-audit audit-blockstatus              # shared mailboxes with sign-in enabled
    graph-audit audit-adminroles               # shared mailboxes holding a directory role
    graph-audit audit-licenses -v --output-dir ./out --formats json csv

Actions (each accepts --dry-run):
    graph-audit revoke-sessions --upn user@contoso.com
    graph-audit revoke-mfa --upn user@contoso.com
    graph-audit remove-licenses --upn user@contoso.com
    graph-audit send-mail --sender a@contoso.com --to b@contoso.com --subject S --body B

Read-only lookups:
    graph-audit get-email --upn user@contoso.com --subject "Invoice" --spoofed
    graph-audit check-licenses ENTERPRISEPACK EMS        # or '*' for all

Credentials come from TENANT_ID, CLIENT_ID and CLIENT_SECRET, read from the
environment after loading ./.env (or --env-file) if present.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx

from .config import AuditConfig, ConfigError, EngineConfig, RetryPolicy
from .safety.guardian import SafetyGuardian, SafetyViolation
from .auth.authenticator import Authenticator, AuthenticationError
from .graph.client import GraphAPIError, GraphClient
from .audit import ALL_JOBS, AuditCancelled, FetchError, run_audit
from .actions import (
    remove_all_licenses,
    require_mfa_reregistration,
    revoke_sign_in_sessions,
    search_messages,
    send_mail,
    sku_availability,
    spoof_summary,
)
from .actions.mail import validate_email
from .reporting import export_csv, export_json, print_report

logger = logging.getLogger("graph_audit.cli")

# Write endpoints each command may call; everything else runs read-only
COMMAND_WRITES = {
    "revoke-sessions": ("revoke_sessions",),
    "revoke-mfa": ("delete_software_oath",),
    "remove-licenses": ("assign_license",),
    "send-mail": ("send_mail",),
}

Handler = Callable[[GraphClient, argparse.Namespace, EngineConfig], Awaitable[int]]


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _email(value: str) -> str:
    try:
        return validate_email(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase logging (-v info, -vv debug)",
    )
    common.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (same as -vv)",
    )
    common.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a .env file with TENANT_ID, CLIENT_ID, CLIENT_SECRET (default: ./.env)",
    )
    common.add_argument(
        "--cert-path",
        type=str,
        default=None,
        help="Authenticate with a base64-encoded PFX instead of CLIENT_SECRET",
    )

    parser = argparse.ArgumentParser(
        prog="graph-audit",
        description="Microsoft Graph directory audit and remediation tools",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="command")

    # --- Audits ---
    for name, job in ALL_JOBS.items():
        audit_p = subparsers.add_parser(name, help=job.description, parents=[common])
        audit_p.add_argument(
            "--max-concurrency",
            type=int,
            default=None,
            help="Maximum simultaneous mailbox lookups",
        )
        audit_p.add_argument(
            "--retries",
            type=int,
            default=None,
            help="Retries for throttled or failed mailbox lookups (429/5xx)",
        )
        audit_p.add_argument(
            "--output-dir", "-o",
            type=Path,
            default=None,
            help="Also write the report to this directory",
        )
        audit_p.add_argument(
            "--formats",
            nargs="+",
            choices=["json", "csv"],
            default=["json"],
            help="File formats written to --output-dir (default: json)",
        )

    # --- Actions ---
    for name, help_text in (
        ("revoke-sessions", "Revoke all sign-in sessions of a user"),
        ("revoke-mfa", "Require MFA re-registration by deleting software OATH methods"),
        ("remove-licenses", "Remove every license assigned to a user"),
    ):
        action_p = subparsers.add_parser(name, help=help_text, parents=[common])
        action_p.add_argument("--upn", "-u", required=True, help="User principal name")
        action_p.add_argument("--dry-run", action="store_true", help="Log writes instead of sending them")

    mail_p = subparsers.add_parser("send-mail", help="Send a plain-text email as a user", parents=[common])
    mail_p.add_argument("--sender", "-u", required=True, help="Sender mailbox (UPN)")
    mail_p.add_argument("--to", "-e", required=True, type=_email, help="Recipient email address")
    mail_p.add_argument("--subject", "-s", required=True, help="Email subject")
    mail_p.add_argument("--body", "-b", required=True, help="Email body")
    mail_p.add_argument("--dry-run", action="store_true", help="Log the send instead of performing it")

    # --- Lookups ---
    get_p = subparsers.add_parser("get-email", help="Search a mailbox by subject", parents=[common])
    get_p.add_argument("--upn", "-u", required=True, help="Mailbox to search (UPN)")
    get_p.add_argument("--subject", "-s", required=True, help="Email subject to search for")
    get_p.add_argument(
        "--spoofed", "-p",
        action="store_true",
        help="Summarise sender/from/reply-to agreement instead of printing raw JSON",
    )

    sku_p = subparsers.add_parser(
        "check-licenses", help="Show remaining units per subscribed SKU", parents=[common]
    )
    sku_p.add_argument("skus", nargs="+", metavar="SKU", help="SKU part numbers, or '*' for all")

    return parser.parse_args(argv)


def configure_logging(verbosity: int) -> None:
    """Send log records to stderr at WARNING, INFO (-v) or DEBUG (-vv)."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    # httpx logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build configuration from the environment plus CLI overrides."""
    config = EngineConfig.from_env(env_file=args.env_file, certificate_path=args.cert_path)

    retry = RetryPolicy()
    if getattr(args, "retries", None) is not None:
        retry.max_retries = args.retries
    max_concurrency = getattr(args, "max_concurrency", None)
    if max_concurrency is None:
        max_concurrency = config.audit.max_concurrency
    config.audit = AuditConfig(max_concurrency=max_concurrency, retry=retry)
    config.output_dir = getattr(args, "output_dir", None)
    config.dry_run = getattr(args, "dry_run", False)
    return config


def build_client(token: str, guardian: SafetyGuardian, config: EngineConfig) -> GraphClient:
    return GraphClient(token, guardian=guardian, max_connections=config.audit.max_concurrency)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def _install_cancel_handlers(cancel: asyncio.Event) -> list[int]:
    """Route SIGINT/SIGTERM to the cancel event where the loop supports it."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops and non-main threads cannot take handlers
            pass
    return installed


async def _cmd_audit(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    job = ALL_JOBS[args.command]
    cancel = asyncio.Event()
    installed = _install_cancel_handlers(cancel)
    try:
        report = await run_audit(client, job, config=config.audit, cancel=cancel)
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    print_report(report, job.describe, title=job.description)

    if config.output_dir:
        run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        extra = {
            "request_stats": client.get_stats(),
            "safety": client.guardian.get_audit_record(),
        }
        if "json" in args.formats:
            path = export_json(report, config.output_dir, run_id, extra=extra)
            print(f"  📄 JSON: {path}")
        if "csv" in args.formats:
            path = export_csv(report, config.output_dir, run_id)
            print(f"  📊 CSV:  {path}")
    return 0


async def _cmd_revoke_sessions(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    if await revoke_sign_in_sessions(client, args.upn):
        print(f"✅ Sign-in sessions revoked for {args.upn}.")
    else:
        print(f"[dry-run] Would revoke sign-in sessions for {args.upn}.")
    return 0


async def _cmd_revoke_mfa(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    removed = await require_mfa_reregistration(client, args.upn)
    prefix = "[dry-run] Would delete" if config.dry_run else "✅ Deleted"
    if removed:
        print(f"{prefix} {len(removed)} software OATH method(s) for {args.upn}.")
    else:
        print(f"No software OATH methods registered for {args.upn}.")
    return 0


async def _cmd_remove_licenses(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    removed = await remove_all_licenses(client, args.upn)
    if not removed:
        print("No licenses found to remove.")
    elif config.dry_run:
        print(f"[dry-run] Would remove {len(removed)} license(s) from {args.upn}.")
    else:
        print(f"✅ Licenses successfully removed from {args.upn}.")
    return 0


async def _cmd_send_mail(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    if await send_mail(client, args.sender, args.to, args.subject, args.body):
        print(f"✅ Email sent successfully to {args.to}.")
    else:
        print(f"[dry-run] Would send email from {args.sender} to {args.to}.")
    return 0


async def _cmd_get_email(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    messages = await search_messages(client, args.upn, args.subject)
    if not args.spoofed:
        print(json.dumps(messages, indent=2, ensure_ascii=False))
        return 0

    for entry in spoof_summary(messages):
        print(f"Subject: {entry['subject']}")
        if not entry["reply_to"]:
            print("ReplyTo: None")
        for reply in entry["reply_to"]:
            mark = "✅" if reply["matches_from"] else "❌"
            print(f"ReplyTo: {reply['address']} {mark}")
        mark = "✅" if entry["sender_matches_from"] else "❌"
        print(f"Sender: {entry['sender']} {mark}")
        print(f"From: {entry['from']} {mark}")
        print()
    return 0


async def _cmd_check_licenses(client: GraphClient, args: argparse.Namespace, config: EngineConfig) -> int:
    availability = await sku_availability(client, args.skus)
    print(json.dumps(availability))
    return 0


COMMANDS: dict[str, Handler] = {
    **{name: _cmd_audit for name in ALL_JOBS},
    "revoke-sessions": _cmd_revoke_sessions,
    "revoke-mfa": _cmd_revoke_mfa,
    "remove-licenses": _cmd_remove_licenses,
    "send-mail": _cmd_send_mail,
    "get-email": _cmd_get_email,
    "check-licenses": _cmd_check_licenses,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def main_async(args: argparse.Namespace) -> int:
    """Authenticate, open one Graph client, and run the selected command."""
    config = build_config(args)
    logger.info(f"Starting {args.command}")

    token = await Authenticator(config.auth).acquire_token()

    guardian = SafetyGuardian(
        allowed_actions=COMMAND_WRITES.get(args.command, ()),
        dry_run=config.dry_run,
    )
    async with build_client(token, guardian, config) as client:
        status = await COMMANDS[args.command](client, args, config)
        logger.debug(f"Request stats: {client.get_stats()}")

    logger.info("Operation completed successfully.")
    return status


FATAL_ERRORS = (
    ConfigError,
    AuthenticationError,
    FetchError,
    GraphAPIError,
    SafetyViolation,
    AuditCancelled,
    ValueError,
    httpx.HTTPError,
)


def main(argv: Optional[list[str]] = None) -> int:
    """Synchronous entry point for `graph-audit` and `python -m graph_audit`."""
    args = parse_args(argv)
    configure_logging(2 if args.debug else args.verbose)

    try:
        return asyncio.run(main_async(args))
    except FATAL_ERRORS as e:
        logger.debug("Unrecovered error", exc_info=True)
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("❌ Interrupted.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
