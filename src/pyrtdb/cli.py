"""Command-line front-end for browsing and editing the realtime document.

Usage
-----
Set environment variables and run::

    export RTDB_DATABASE_URL="https://my-project-default-rtdb.europe-west1.firebasedatabase.app"
    export RTDB_AUTH_TOKEN="<admin ID token>"
    pyrtdb show devices/robot-1
    pyrtdb set devices/robot-1/motors/left/state '"forward"'
    pyrtdb add devices/robot-1/leds 2 '{"state": false}' --type object
    pyrtdb export --output-dir backups/
    pyrtdb robot '{"action": "move", "robot_id": "robot-1", "value": "stop"}'
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

from pyrtdb.commands import EditCommand, ValueType, parse_json_text
from pyrtdb.config import BACKENDS, RtdbConfig
from pyrtdb.devices import RobotControl, fleet_counts
from pyrtdb.document import NO_DATA, JsonValue, format_path, to_path
from pyrtdb.exceptions import DeviceCommandError, DocumentInputError, RtdbError
from pyrtdb.render import TreeNode, default_expanded, expand_all, render_rows, render_text
from pyrtdb.session import Session, require_admin
from pyrtdb.status import StatusBanner
from pyrtdb.store import DocumentStore, open_store
from pyrtdb.sync import SyncController
from pyrtdb.transfer import import_file, write_export

_logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_WRITE_FAILED = 1
EXIT_BAD_INPUT = 2


def _make_confirm(assume_yes: bool) -> Callable[[str], bool]:
    def confirm(prompt: str) -> bool:
        if assume_yes:
            return True
        try:
            answer = input(f"{prompt} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}

    return confirm


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyrtdb",
        description="Browse and edit a realtime JSON document database.",
    )
    parser.add_argument("--backend", choices=BACKENDS, help="Store backend (default: RTDB_BACKEND or rest)")
    parser.add_argument("--database-url", help="Database root URL (default: RTDB_DATABASE_URL)")
    parser.add_argument("--max-depth", type=int, help="Deepest level rendered before truncating")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print the tree at a path")
    show.add_argument("filter", nargs="?", default="", help="Slash-separated path (default: root)")
    show.add_argument("--all", action="store_true", help="Expand every level")

    watch = sub.add_parser("watch", help="Re-print the tree on every change")
    watch.add_argument("filter", nargs="?", default="", help="Slash-separated path (default: root)")

    set_ = sub.add_parser("set", help="Replace the value at a path")
    set_.add_argument("path")
    set_.add_argument("value", help="JSON text, e.g. '\"forward\"' or '{\"a\": 1}'")

    add = sub.add_parser("add", help="Add a field under an object or array")
    add.add_argument("parent")
    add.add_argument("key", help="Field name (objects) or index (arrays)")
    add.add_argument("value", nargs="?", default="", help="Value text, coerced by --type")
    add.add_argument("--type", dest="value_type", choices=[t.value for t in ValueType], default="string")

    delete = sub.add_parser("delete", help="Remove the value at a path")
    delete.add_argument("path")
    delete.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    export = sub.add_parser("export", help="Write the whole document to export-<timestamp>.json")
    export.add_argument("--output-dir", "-o", default=".")

    import_ = sub.add_parser("import", help="Replace the whole document with a JSON file")
    import_.add_argument("file")
    import_.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    robot = sub.add_parser("robot", help="Run a device-control request")
    robot.add_argument("request", help='JSON payload, e.g. \'{"action": "stop_all"}\'')

    sub.add_parser("stats", help="Count devices and groups")

    return parser


def _config_from_args(args: argparse.Namespace) -> RtdbConfig:
    overrides: dict[str, Any] = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.max_depth is not None:
        overrides["max_depth"] = args.max_depth
    return RtdbConfig.from_env(**overrides)


def _session_from_config(config: RtdbConfig) -> Session | None:
    if not config.auth_token:
        return None
    # The database screens are admin-only.
    return require_admin(Session.from_id_token(config.auth_token))


def _banner(config: RtdbConfig) -> StatusBanner:
    return StatusBanner(ttl=timedelta(seconds=config.banner_ttl))


def _report(banner: StatusBanner, ok: bool) -> int:
    message = banner.current
    if message is not None:
        print(message.text, file=sys.stderr if message.is_error else sys.stdout)
    return EXIT_OK if ok else EXIT_WRITE_FAILED


async def _load(controller: SyncController, config: RtdbConfig) -> None:
    try:
        await controller.wait_loaded(config.request_timeout)
    except TimeoutError as exc:
        raise RtdbError("Timed out waiting for the first snapshot") from exc


def _print_view(value: JsonValue, filter_path: str, config: RtdbConfig, *, expand: bool) -> None:
    if value is NO_DATA:
        print("No data at this path")
        return
    rows = render_rows(
        value,
        to_path(filter_path),
        max_depth=config.max_depth,
        expanded=expand_all if expand else default_expanded,
    )
    print(render_text(rows))


async def _watch(store: DocumentStore, filter_path: str, config: RtdbConfig) -> int:
    changed = asyncio.Event()
    async with SyncController(store, banner=_banner(config), on_change=lambda _snapshot: changed.set()) as controller:
        node: TreeNode | None = None
        while True:
            await changed.wait()
            changed.clear()
            value = controller.view(filter_path)
            if value is NO_DATA:
                node = None
                print("No data at this path")
                continue
            if node is None:
                node = TreeNode(
                    value,
                    to_path(filter_path),
                    dispatch=controller.submit,
                    confirm=_make_confirm(False),
                )
            else:
                node.update(value)
            print(node.render(config.max_depth))
            print("-" * 40)


async def _add(controller: SyncController, args: argparse.Namespace, config: RtdbConfig) -> int:
    await _load(controller, config)
    parent = controller.view(args.parent)
    if parent is NO_DATA:
        raise DocumentInputError(f"No data at {args.parent or '/'}")
    issued: list[EditCommand] = []
    node = TreeNode(parent, to_path(args.parent), dispatch=issued.append, confirm=_make_confirm(False))
    node.commit_add(args.key, args.value_type, args.value)
    ok = all([await controller.dispatch(command) for command in issued])
    return _report(controller.banner, ok)


async def _run(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    session = _session_from_config(config)

    async with open_store(config, session) as store:
        controller = SyncController(store, banner=_banner(config))

        if args.command == "set":
            ok = await controller.apply_edit(args.path, parse_json_text(args.value))
            return _report(controller.banner, ok)

        if args.command == "delete":
            if not _make_confirm(args.yes)(f"Delete {format_path(to_path(args.path))}?"):
                return EXIT_OK
            ok = await controller.apply_delete(args.path)
            return _report(controller.banner, ok)

        if args.command == "import":
            ok = await import_file(controller, args.file, confirm=_make_confirm(args.yes))
            return _report(controller.banner, ok)

        if args.command == "robot":
            try:
                payload = json.loads(args.request)
            except json.JSONDecodeError as exc:
                raise DocumentInputError(f"Invalid request JSON: {exc.msg}") from exc
            result = await RobotControl(store).handle_request(payload)
            print(json.dumps(result, indent=2, ensure_ascii=False))
            return EXIT_OK

        if args.command == "watch":
            return await _watch(store, args.filter, config)

        async with controller:
            if args.command == "add":
                return await _add(controller, args, config)

            await _load(controller, config)
            if args.command == "show":
                _print_view(controller.view(args.filter), args.filter, config, expand=args.all)
            elif args.command == "export":
                target = write_export(controller, args.output_dir)
                print(target)
            elif args.command == "stats":
                counts = fleet_counts(controller.mirror)
                print(f"Devices: {counts.devices}  Groups: {counts.groups}")
        return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        return asyncio.run(_run(args))
    except (DocumentInputError, DeviceCommandError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except RtdbError as exc:
        _logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_WRITE_FAILED
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
