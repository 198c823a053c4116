#!/usr/bin/env python3
"""
Vocalize command line client.

Usage:
    vocalize [options] <command>

Commands:
    login                Sign in (prompts for email and password)
    logout [--forget]    Sign out; --forget also drops remembered credentials
    status               Show session, cache and queue state
    vocalizations        List vocalizations (--refresh to bypass the cache)
    participants         List your participants (--refresh to bypass the cache)
    pending              List queued recordings
    sync                 Upload every pending recording

Options:
    --config PATH        Path to configuration file
    --verbose, -v        Enable verbose debug logging
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from vocalize import __version__
from vocalize.app import VocalizeClient
from vocalize.common.config import ClientConfig
from vocalize.common.errors import VocalizeError
from vocalize.common.events import CallbackSessionEvents, NoticeLevel
from vocalize.common.logging_config import setup_logging
from vocalize.common.models import Destination, LoginResult
from vocalize.services.maintenance import get_cache_info

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="vocalize",
        description="Vocalize command line client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    login = commands.add_parser("login", help="Sign in")
    login.add_argument("--email", type=str, help="Account email (prompted if omitted)")
    login.add_argument(
        "--no-remember",
        action="store_true",
        help="Do not keep credentials for automatic re-login",
    )

    logout = commands.add_parser("logout", help="Sign out")
    logout.add_argument(
        "--forget",
        action="store_true",
        help="Also forget remembered credentials",
    )

    commands.add_parser("status", help="Show session, cache and queue state")

    vocalizations = commands.add_parser("vocalizations", help="List vocalizations")
    vocalizations.add_argument("--refresh", action="store_true", help="Bypass the cache")

    participants = commands.add_parser("participants", help="List your participants")
    participants.add_argument("--refresh", action="store_true", help="Bypass the cache")

    commands.add_parser("pending", help="List queued recordings")
    commands.add_parser("sync", help="Upload every pending recording")

    return parser.parse_args(argv)


def _print_notice(level: NoticeLevel, title: str, message: str) -> None:
    stream = sys.stderr if level is NoticeLevel.ERROR else sys.stdout
    print(f"{title}: {message}" if message else title, file=stream)


def _print_destination(destination: Destination) -> None:
    if destination is Destination.AWAITING_ACCESS:
        print("Your account is waiting for an administrator to grant access.")
    elif destination is Destination.LOGIN:
        print("Please sign in again with 'vocalize login'.")


async def _login(client: VocalizeClient, args: argparse.Namespace) -> int:
    email = args.email or input("Email: ").strip()
    password = getpass.getpass("Password: ")
    result = await client.session.login(email, password, remember=not args.no_remember)
    return 0 if result is LoginResult.SUCCESS else 1


async def _status(client: VocalizeClient) -> int:
    authenticated = await client.session.is_authenticated()
    print(f"Server:        {client.config.base_url}")
    print(f"Signed in:     {'yes' if authenticated else 'no'}")
    if authenticated:
        print(f"User:          {await client.vault.get_display_name() or '-'}")
        print(f"User id:       {await client.vault.get_user_id() or '-'}")
        print(f"Role:          {await client.vault.get_role() or '-'}")
    print(f"Remembered:    {'yes' if await client.vault.has_remembered_credentials() else 'no'}")

    info = await get_cache_info(client.store)
    print(f"API version:   {info.api_version or '-'}")
    print(f"Cached keys:   {', '.join(info.cache_keys) or '-'}")

    pending = await client.pending.list_recordings()
    waiting = sum(1 for r in pending if r.is_pending)
    print(f"Recordings:    {waiting} pending, {len(pending) - waiting} sent")
    return 0 if authenticated else 1


async def _vocalizations(client: VocalizeClient, refresh: bool) -> int:
    items = await client.vocalizations.get_vocalizations(force_refresh=refresh)
    if not items:
        print("No vocalizations.")
    for item in items:
        print(f"  [{item.get('id')}] {item.get('nome')}: {item.get('descricao', '')}")
    return 0


async def _participants(client: VocalizeClient, refresh: bool) -> int:
    items = await client.participants.get_participants_by_user(force_refresh=refresh)
    if not items:
        print("No participants registered.")
    for item in items:
        print(f"  [{item.get('id')}] {item.get('nome', '')}")
    return 0


async def _pending(client: VocalizeClient) -> int:
    recordings = await client.pending.list_recordings()
    if not recordings:
        print("No recordings queued.")
    for record in recordings:
        print(
            f"  {record.status:<8} {record.vocalizationName} "
            f"(participant {record.participanteId}, {record.duration}s) {record.uri}"
        )
    return 0


async def _sync(client: VocalizeClient) -> int:
    report = await client.pending.upload_pending(client.audios)
    print(f"Uploaded {len(report.sent)} recording(s).")
    for uri, message in report.failed.items():
        print(f"  failed: {uri}: {message}", file=sys.stderr)
    return 0 if report.all_sent else 1


async def run_command(args: argparse.Namespace, config: ClientConfig) -> int:
    """Run one CLI command inside a client context."""
    events = CallbackSessionEvents(
        on_navigate=_print_destination,
        on_notify=_print_notice,
    )
    async with VocalizeClient(config, events=events) as client:
        try:
            if args.command == "login":
                return await _login(client, args)
            if args.command == "logout":
                await client.session.logout(clear_credentials=args.forget)
                return 0
            if args.command == "status":
                return await _status(client)
            if args.command == "vocalizations":
                return await _vocalizations(client, args.refresh)
            if args.command == "participants":
                return await _participants(client, args.refresh)
            if args.command == "pending":
                return await _pending(client)
            if args.command == "sync":
                return await _sync(client)
        except VocalizeError as e:
            logger.debug(f"{args.command} failed: {e!r}")
            print(f"Error ({e.kind.value}): {e.message}", file=sys.stderr)
            return 1
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        setup_logging(verbose=args.verbose, component="cli")
    except Exception as e:
        print(f"WARNING: Failed to set up logging: {e}", file=sys.stderr)

    config = ClientConfig(Path(args.config) if args.config else None)

    try:
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
