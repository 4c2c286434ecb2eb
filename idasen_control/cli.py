"""
CLI interface for desk control.

Every client command talks to the background daemon, starting it first if
needed. ``--server`` runs the daemon itself in the foreground.
"""

import argparse
import asyncio
import json
import logging
import sys

from idasen_control.client import request, send_command, stop_daemon
from idasen_control.config import load_config, save_config
from idasen_control.errors import DaemonError
from idasen_control.pidfile import daemon_running
from idasen_control.scanner import run_scan
from idasen_control.server import run_daemon
from idasen_control.status import format_status, render_prompt

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False, daemon: bool = False) -> None:
    """Root logging setup shared by the daemon and client runs."""
    if verbose:
        level = logging.DEBUG
    elif daemon:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    # bleak is chatty about backend internals
    logging.getLogger("bleak").setLevel(logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idasen-control",
        description="Control an IKEA Idåsen / Linak standing desk over Bluetooth.",
    )
    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("-m", "--move-to", type=float, metavar="CM", help="move the desk to a position in cm")
    commands.add_argument("-s", "--status", action="store_true", help="show the desk height and sitting time")
    commands.add_argument("-w", "--wait", action="store_true", help="block until the desk is connected")
    commands.add_argument("--connect-to", metavar="ADDRESS", help="remember the desk's Bluetooth address")
    commands.add_argument("--prompt-fragment", action="store_true", help="print a fragment for a shell prompt")
    commands.add_argument("--print-config", action="store_true", help="print the active configuration")
    commands.add_argument("--scan", action="store_true", help="scan for nearby Bluetooth devices")
    commands.add_argument("--server", action="store_true", help="run the daemon in the foreground")
    commands.add_argument("--stop-server", action="store_true", help="stop the running daemon")
    parser.add_argument("--json", action="store_true", help="print machine readable JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def _print_result(value, as_json: bool, message: str) -> None:
    if as_json:
        print(json.dumps(value))
    elif value is True:
        print(f"✅ {message}")
    else:
        print(f"❌ {message} failed")


async def run_client(args: argparse.Namespace, config) -> int:
    """Run one client command against the daemon."""
    if args.move_to is not None:
        result = await request(config, {"op": "moveTo", "pos": args.move_to}, verbose=args.verbose)
        _print_result(result, args.json, f"Moved to {min(args.move_to, config.desk_max_position):g}cm")
        return 0 if result is True else 1

    if args.wait:
        result = await request(config, {"op": "wait"}, verbose=args.verbose)
        _print_result(result, args.json, "Desk ready")
        return 0

    if args.prompt_fragment:
        # Prompts render on every shell command; never spawn a daemon for one
        if not daemon_running(config):
            return 0
        status = await send_command(config, {"op": "getStatus"})
        print(render_prompt(status, config))
        return 0

    status = await request(config, {"op": "getStatus"}, verbose=args.verbose)
    print(json.dumps(status) if args.json else format_status(status))
    return 0


def connect_to(address: str, config, as_json: bool) -> int:
    config = config.with_desk_address(address)
    path = save_config(config)
    restarted = stop_daemon(config)
    if as_json:
        print(json.dumps({"deskAddress": address, "restarted": restarted}))
        return 0
    print(f"💾 Desk address {address} saved to {path}")
    if restarted:
        print("🔁 Stopped the running daemon; it will reconnect on the next command")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for idasen-control command."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, daemon=args.server)
    config = load_config()

    if args.server:
        return run_daemon(config)

    if args.stop_server:
        stopped = stop_daemon(config)
        if args.json:
            print(json.dumps(stopped))
        else:
            print("🛑 Daemon stopped" if stopped else "⚠️  No daemon running")
        return 0

    if args.print_config:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    if args.connect_to:
        return connect_to(args.connect_to, config, args.json)

    if args.scan:
        asyncio.run(run_scan())
        return 0

    try:
        return asyncio.run(run_client(args, config))
    except DaemonError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n🛑 Interrupted")
        if args.move_to is not None:
            asyncio.run(send_command(config, {"op": "stop"}))
        return 130


if __name__ == "__main__":
    sys.exit(main())
