"""vpnguard command line.

Usage:
    vpnguard status --cycles 3
    vpnguard monitor --duration 30
    vpnguard prefs get connection.killSwitch
    vpnguard prefs set performance.mtu 1400
    vpnguard prefs export --output prefs.json
    vpnguard stats --days 30

Exit codes:
    0 - success
    1 - operation failed
    2 - invalid arguments or preference value
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from .config import VPNGuardConfig, get_config
from .modules.vpn_guardian import EVENT_TYPES, VPNGuardian
from .preferences.store import PreferenceStore
from .storage import JsonFileStorage, create_storage
from .utils.logging import setup_logging


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, default=str))


def _parse_value(raw: str) -> Any:
    """JSON literal if it parses (``true``, ``1400``, ``null``), else the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vpnguard", description="VPN client monitor and preferences")
    parser.add_argument("--storage", default=None, help="JSON state file (overrides configured backend)")
    parser.add_argument("--debug", action="store_true", help="Human-readable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Run checks and samples, print the dashboard")
    status.add_argument("--cycles", type=int, default=1, help="Security checks / samples to run")

    monitor = sub.add_parser("monitor", help="Run the engines and stream events as JSON lines")
    monitor.add_argument("--duration", type=float, default=30.0, help="Seconds to run")

    stats = sub.add_parser("stats", help="Aggregate statistics of past sessions")
    stats.add_argument("--days", type=float, default=7, help="Trailing window in days")

    prefs = sub.add_parser("prefs", help="Read and change preferences")
    prefs_sub = prefs.add_subparsers(dest="prefs_command", required=True)

    get = prefs_sub.add_parser("get", help="Print one value, or the whole tree")
    get.add_argument("path", nargs="?", default=None)

    set_ = prefs_sub.add_parser("set", help="Validate and write one value")
    set_.add_argument("path")
    set_.add_argument("value", help="JSON literal or plain string")

    reset = prefs_sub.add_parser("reset", help="Restore defaults")
    reset.add_argument("path", nargs="?", default=None)
    reset.add_argument("--all", action="store_true", dest="reset_all")

    prefs_sub.add_parser("diff", help="Show values that differ from defaults")

    export = prefs_sub.add_parser("export", help="Write an export payload")
    export.add_argument("--output", default=None, help="File to write (stdout if omitted)")

    import_ = prefs_sub.add_parser("import", help="Replace preferences from an export file")
    import_.add_argument("file")

    return parser


def _storage_for(args: argparse.Namespace, config: VPNGuardConfig):
    if args.storage:
        return JsonFileStorage(args.storage)
    return create_storage(config)


def run_prefs(args: argparse.Namespace, store: PreferenceStore) -> int:
    command = args.prefs_command

    if command == "get":
        if args.path is None:
            _print_json(store.get_all())
            return 0
        if not store.has(args.path):
            print(f"No preference at {args.path}", file=sys.stderr)
            return 1
        _print_json(store.get(args.path))
        return 0

    if command == "set":
        value = _parse_value(args.value)
        if not store.validate(args.path, value):
            print(f"Invalid value for {args.path}: {args.value}", file=sys.stderr)
            return 2
        old_value = store.get(args.path)
        saved = store.set(args.path, value)
        _print_json({"path": args.path, "value": value, "old_value": old_value})
        return 0 if saved else 1

    if command == "reset":
        if args.reset_all:
            return 0 if store.reset_all() else 1
        if args.path is None:
            print("Give a path or --all", file=sys.stderr)
            return 2
        return 0 if store.reset(args.path) else 1

    if command == "diff":
        _print_json(store.get_diff())
        return 0

    if command == "export":
        payload = json.dumps(store.export_preferences(), indent=2)
        if args.output:
            Path(args.output).write_text(payload, encoding="utf-8")
        else:
            print(payload)
        return 0

    if command == "import":
        try:
            raw = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"Cannot read {args.file}: {e}", file=sys.stderr)
            return 1
        return 0 if store.import_preferences(raw) else 1

    return 2


async def run_status(guardian: VPNGuardian, cycles: int) -> int:
    for _ in range(max(cycles, 1)):
        await guardian.security.perform_security_check()
        await guardian.analytics.collect_metrics()
    _print_json(guardian.get_dashboard_data())
    return 0


async def run_monitor(guardian: VPNGuardian, duration: float) -> int:
    def make_printer(event: str):
        def handler(data: Any) -> None:
            print(json.dumps({"event": event, "data": _to_jsonable(data)}, default=str), flush=True)
        return handler

    for event in EVENT_TYPES:
        guardian.on(event, make_printer(event))

    await guardian.initialize()
    try:
        await asyncio.sleep(duration)
    finally:
        await guardian.shutdown()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(debug=args.debug or config.debug, log_dir=config.log_dir, stream=sys.stderr)
    storage = _storage_for(args, config)

    if args.command == "prefs":
        store = PreferenceStore(storage=storage, storage_key=config.preferences_storage_key)
        return run_prefs(args, store)

    guardian = VPNGuardian(config=config, storage=storage)

    if args.command == "stats":
        _print_json(guardian.analytics.get_aggregate_stats(args.days))
        return 0
    if args.command == "status":
        return asyncio.run(run_status(guardian, args.cycles))
    if args.command == "monitor":
        return asyncio.run(run_monitor(guardian, args.duration))
    return 2


if __name__ == "__main__":
    sys.exit(main())
