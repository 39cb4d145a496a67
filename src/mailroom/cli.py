from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import DEFAULT_CONFIG_FILENAME, Settings, load_config
from .dispatcher import Dispatcher
from .groups import ALL_GROUP
from .logging_utils import configure_logging, render_fields_block
from .metadata_parser import generate_header
from .store import DataStore
from .utils import load_yaml_file
from .validation import (
    ValidationIssue,
    ValidationReport,
    extract_yaml_line_numbers_from_file,
    group_validation_issues,
    validate_config_data,
)
from .version import __version__

LOGGER = logging.getLogger(__name__)
CONSOLE = Console()


def _config_path(args: argparse.Namespace) -> Optional[Path]:
    path = getattr(args, "config", None)
    if path is not None:
        return Path(path)
    default = Path(DEFAULT_CONFIG_FILENAME)
    return default if default.exists() else None


def _load_settings(args: argparse.Namespace) -> Settings:
    settings = load_config(_config_path(args))
    data_root = getattr(args, "data_root", None)
    if data_root:
        settings.data_root = Path(data_root).expanduser()
    if getattr(args, "dry_run", False):
        settings.dry_run = True
    return settings


def _setup_logging(args: argparse.Namespace, settings: Optional[Settings] = None) -> None:
    if getattr(args, "verbose", False):
        level: int | str = logging.DEBUG
    else:
        level = getattr(args, "log_level", None) or (settings.log_level if settings else logging.INFO)
    log_file = getattr(args, "log_file", None) or (settings.log_file if settings else None)
    configure_logging(level, Path(log_file) if log_file else None)


def _open_store(args: argparse.Namespace) -> Optional[DataStore]:
    try:
        settings = _load_settings(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        CONSOLE.print(f"[bold red]Failed to load configuration:[/bold red] {exc}")
        return None
    _setup_logging(args, settings)
    return DataStore(settings)


def run_sync(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        CONSOLE.print(f"[bold red]Failed to load configuration:[/bold red] {exc}")
        return 1
    _setup_logging(args, settings)

    result = Dispatcher(settings).run_sync()

    if getattr(args, "json", False):
        CONSOLE.print_json(json.dumps(result.as_dict()))
    else:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Key", style="cyan bold", no_wrap=True)
        table.add_column("Value")
        table.add_row("Processed", str(result.reports_processed))
        table.add_row("Distributed", str(result.reports_distributed))
        table.add_row("Removed", str(result.reports_removed))
        table.add_row("Errors", str(len(result.errors)))
        if settings.dry_run:
            table.add_row("Mode", "dry run")
        CONSOLE.print(table)
        for error in result.errors:
            CONSOLE.print(Text.assemble(("✗ ", "red"), error))
        for warning in result.warnings:
            CONSOLE.print(Text.assemble(("! ", "yellow"), warning))
    return 1 if result.errors else 0


def _print_issues(issues: List[ValidationIssue], *, header: str, style: str, show_suggestions: bool) -> None:
    CONSOLE.print(f"\n[{style}]{header}: {len(issues)} issue(s) detected[/{style}]")
    for section, sub_sections in group_validation_issues(issues).items():
        CONSOLE.print(f"[bold]{section}[/bold]")
        for sub_section, section_issues in sub_sections.items():
            if sub_section != section:
                CONSOLE.print(f"  [cyan]{sub_section}[/cyan]")
            for issue in section_issues:
                location = f" (line {issue.line_number})" if issue.line_number else ""
                CONSOLE.print(f"    • {issue.path}{location}: {issue.message}")
                if show_suggestions and issue.fix_suggestion:
                    CONSOLE.print(f"      [dim]Fix: {issue.fix_suggestion}[/dim]")


def _print_report(report: ValidationReport, *, show_suggestions: bool) -> None:
    if report.errors:
        _print_issues(report.errors, header="Validation Errors", style="bold red", show_suggestions=show_suggestions)
    if report.warnings:
        _print_issues(
            report.warnings,
            header="Validation Warnings",
            style="bold yellow",
            show_suggestions=show_suggestions,
        )
    if not report.errors and not report.warnings:
        CONSOLE.print("[bold green]✓ Configuration passed validation.[/bold green]")
    elif not report.errors:
        CONSOLE.print("[bold green]✓ Configuration passed validation (with warnings).[/bold green]")


def run_validate_config(args: argparse.Namespace) -> int:
    config_path = Path(args.config) if args.config else Path(DEFAULT_CONFIG_FILENAME)
    if not config_path.exists():
        CONSOLE.print(f"[bold red]Configuration file not found:[/bold red] {config_path}")
        return 1
    try:
        data = load_yaml_file(config_path)
    except yaml.YAMLError as exc:
        CONSOLE.print(f"[bold red]Failed to parse YAML:[/bold red] {exc}")
        CONSOLE.print("[dim]Fix YAML syntax errors. Common issues: incorrect indentation, missing colons[/dim]")
        return 1
    except OSError as exc:
        CONSOLE.print(f"[bold red]Failed to read configuration:[/bold red] {exc}")
        return 1

    line_map = extract_yaml_line_numbers_from_file(config_path)
    report = validate_config_data(data, line_map, base_dir=config_path.parent)
    _print_report(report, show_suggestions=not getattr(args, "no_suggestions", False))
    if report.errors:
        return 1

    try:
        load_config(config_path)
    except ValueError as exc:
        CONSOLE.print(f"[bold red]Configuration rejected:[/bold red] {exc}")
        return 1
    return 0


def run_groups(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if store is None:
        return 1
    try:
        groups = store.list_groups()
    except OSError as exc:
        CONSOLE.print(f"[bold red]Failed to list peers:[/bold red] {exc}")
        return 1

    table = Table(title="Groups")
    table.add_column("Group", style="cyan bold", no_wrap=True)
    table.add_column("Members")
    ordered = sorted(groups, key=lambda name: (name != ALL_GROUP, name))
    for name in ordered:
        members = sorted(groups[name])
        table.add_row(name, ", ".join(members) if members else "(none)")
    CONSOLE.print(table)
    return 0


def run_create_group(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if store is None:
        return 1
    try:
        store.create_group(args.name, args.peers)
    except ValueError as exc:
        CONSOLE.print(f"[bold red]Could not create group:[/bold red] {exc}")
        return 1
    CONSOLE.print(f"[green]✓[/green] Group '{args.name}' created with {len(args.peers)} peer(s)")
    return 0


def run_add_peer(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if store is None:
        return 1
    try:
        peer = store.add_peer(args.alias, args.public_key)
    except ValueError as exc:
        CONSOLE.print(f"[bold red]Could not add peer:[/bold red] {exc}")
        return 1
    CONSOLE.print(f"[green]✓[/green] Peer '{peer.alias}' added")
    return 0


def run_rename_peer(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if store is None:
        return 1
    try:
        store.rename_peer(args.alias, args.new_alias)
    except (OSError, ValueError) as exc:
        CONSOLE.print(f"[bold red]Could not rename peer:[/bold red] {exc}")
        return 1
    CONSOLE.print(f"[green]✓[/green] Peer '{args.alias}' renamed to '{args.new_alias}'")
    return 0


def run_post(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if store is None:
        return 1
    if args.file:
        try:
            content = Path(args.file).read_text(encoding="utf-8")
        except OSError as exc:
            CONSOLE.print(f"[bold red]Could not read {args.file}:[/bold red] {exc}")
            return 1
    else:
        content = sys.stdin.read()
    try:
        filename = store.create_entry(
            content,
            suffix=args.suffix or "",
            pinned=args.pinned,
            to=args.to or [],
            except_=args.except_ or [],
            source_files=args.source_files or [],
            destination_path=args.destination_path,
        )
    except (OSError, ValueError) as exc:
        CONSOLE.print(f"[bold red]Could not create entry:[/bold red] {exc}")
        return 1
    LOGGER.debug(render_fields_block("Entry Created", {"Entry": filename, "Pinned": args.pinned}))
    CONSOLE.print(filename, markup=False, highlight=False)
    return 0


def run_header(args: argparse.Namespace) -> int:
    header = generate_header(
        args.to or [],
        args.except_ or [],
        args.source_files or [],
        args.destination_path,
    )
    sys.stdout.write(header)
    return 0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to the YAML configuration file (default: ./{DEFAULT_CONFIG_FILENAME} when present)",
    )
    parser.add_argument("--data-root", dest="data_root", default=None, help="Override settings.data_root")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Console log level (INFO, DEBUG, ...)")
    parser.add_argument("--log-file", dest="log_file", type=Path, default=None, help="Also write logs to this file")


def _add_routing_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--to", action="append", default=None, help="Recipient alias or group:<name> (repeatable)")
    parser.add_argument(
        "--except",
        dest="except_",
        action="append",
        default=None,
        help="Excluded alias or group:<name> (repeatable)",
    )
    parser.add_argument(
        "--source-file",
        dest="source_files",
        action="append",
        default=None,
        help="Attachment path relative to the data root (repeatable)",
    )
    parser.add_argument("--destination-path", dest="destination_path", default=None, help="Package folder name")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailroom", description="Distribute entries into peer mailboxes.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run one dissemination pass")
    _add_common_arguments(sync)
    sync.add_argument("--dry-run", dest="dry_run", action="store_true", help="Log changes without touching mailboxes")
    sync.add_argument("--json", action="store_true", help="Print the result as JSON")
    sync.set_defaults(handler=run_sync)

    validate = subparsers.add_parser("validate-config", help="Validate the configuration file")
    validate.add_argument("--config", type=Path, default=None, help="Path to the YAML configuration file")
    validate.add_argument("--no-suggestions", dest="no_suggestions", action="store_true", help="Hide fix suggestions")
    validate.set_defaults(handler=run_validate_config)

    groups = subparsers.add_parser("groups", help="List groups and their members")
    _add_common_arguments(groups)
    groups.set_defaults(handler=run_groups)

    create_group = subparsers.add_parser("create-group", help="Create a group from existing peers")
    _add_common_arguments(create_group)
    create_group.add_argument("name")
    create_group.add_argument("peers", nargs="+")
    create_group.set_defaults(handler=run_create_group)

    add_peer = subparsers.add_parser("add-peer", help="Create a peer and its mailboxes")
    _add_common_arguments(add_peer)
    add_peer.add_argument("alias")
    add_peer.add_argument("public_key")
    add_peer.set_defaults(handler=run_add_peer)

    rename_peer = subparsers.add_parser("rename-peer", help="Rename a peer directory")
    _add_common_arguments(rename_peer)
    rename_peer.add_argument("alias")
    rename_peer.add_argument("new_alias")
    rename_peer.set_defaults(handler=run_rename_peer)

    post = subparsers.add_parser("post", help="Create an entry with a routing header")
    _add_common_arguments(post)
    _add_routing_arguments(post)
    post.add_argument("--file", default=None, help="Read the entry body from this file (default: stdin)")
    post.add_argument("--pinned", action="store_true", help="Store the entry under entries/pinned")
    post.add_argument("--suffix", default="", help="Text appended to the timestamp filename")
    post.set_defaults(handler=run_post)

    header = subparsers.add_parser("header", help="Print a routing header")
    _add_routing_arguments(header)
    header.set_defaults(handler=run_header)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.handler(args)


__all__ = [
    "CONSOLE",
    "build_parser",
    "main",
    "run_add_peer",
    "run_create_group",
    "run_groups",
    "run_header",
    "run_post",
    "run_rename_peer",
    "run_sync",
    "run_validate_config",
]
