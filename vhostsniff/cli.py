from __future__ import annotations

"""Command-line interface for vhostsniff.

This module translates CLI flags into runtime settings, executes runs through
`vhostsniff.core`, writes the report file and handles setup/history workflows
backed by local storage.
"""

import argparse
import json
import os
import sqlite3
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .core import CertificateRecord, Finding, _run_async, _run_coro_sync, count_targets, load_records
from .cli_parts.report import delete_mode as _delete_mode, report_mode as _report_mode
from .cli_parts.setup import (
    load_saved_runtime_settings as _load_saved_runtime_settings,
    save_runtime_setting as _save_runtime_setting,
    validate_dns_server as _validate_dns_server,
)
from .output import console, err_console, output, print_finding, print_scan_status
from .storage import REPORT_FORMATS, count_runs, get_db_path, save_run, write_report
from .version import __version__


def _fatal(message: str, code: int = 1) -> None:
    err_console.print(f"[red]{message}[/red]")
    sys.exit(code)


def _print_json_output(findings: List[Finding]) -> None:
    try:
        sys.stdout.write(json.dumps([f.to_dict() for f in findings], ensure_ascii=False, indent=2))
        sys.stdout.write("\n")
    except BrokenPipeError:
        return


def _effective_settings(args: argparse.Namespace, saved: Dict[str, Any]) -> Dict[str, Any]:
    """CLI options > saved setup > environment > built-in defaults."""
    return {
        "dns": _validate_dns_server(args.dns or saved["dns"]),
        "timeout": args.timeout if args.timeout is not None else float(saved["timeout"]),
        "connect_timeout": args.connect_timeout if args.connect_timeout is not None else float(saved["connect_timeout"]),
        "threads": args.threads if args.threads is not None else saved["threads"],
        "capture_body": bool(args.body),
        "follow_redirects": bool(args.follow_redirects),
        "key_by_host": bool(args.key_by_host),
        "verbose": bool(args.verbose),
    }


def _run_scan(
    records: List[CertificateRecord],
    settings: Dict[str, Any],
    on_finding: Optional[Callable[[Finding], None]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> List[Finding]:
    return _run_coro_sync(
        _run_async(
            records,
            dns=settings["dns"],
            timeout=settings["timeout"],
            connect_timeout=settings["connect_timeout"],
            threads=settings["threads"],
            capture_body=settings["capture_body"],
            follow_redirects=settings["follow_redirects"],
            key_by_host=settings["key_by_host"],
            verbose=settings["verbose"],
            on_finding=on_finding,
            progress_callback=progress_callback,
        )
    )


def _run_with_rich_progress(
    records: List[CertificateRecord],
    settings: Dict[str, Any],
    on_finding: Optional[Callable[[Finding], None]] = None,
) -> List[Finding]:
    """Execute the run with a Rich progress bar bound to async callbacks."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task("Probing vhosts", total=None)

        def cb(done: int, total: int) -> None:
            progress.update(task_id, total=max(total, 1), completed=done)

        return _run_scan(records, settings, on_finding=on_finding, progress_callback=cb)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="VHOSTSNIFF",
        description=(
            f"vhostsniff v.{__version__} - Hidden virtual host discovery from TLS certificate names\n"
            "CLI options > saved setup (--set) > environment > built-in defaults."
        ),
    )
    target_group = parser.add_argument_group("Target")
    target_group.add_argument("-f", "--file", help="Certificate report: '<hostname> [<san>]' per line.")

    scan_group = parser.add_argument_group("Scan")
    scan_group.add_argument("-v", "--verbose", help="Log per-probe failures to stderr.", action="store_true")
    scan_group.add_argument("-b", "--body", help="Include response bodies in findings.", action="store_true")
    scan_group.add_argument("--follow-redirects", help="Follow HTTP redirects (pinned for the probed name).", action="store_true")
    scan_group.add_argument(
        "--key-by-host",
        help="Keep one finding per hostname (later IPs overwrite earlier ones).",
        action="store_true",
    )

    runtime_group = parser.add_argument_group("Runtime Overrides (Advanced)")
    runtime_group.add_argument("--dns", help="DNS server (overrides saved setup).", dest="dns", required=False)
    runtime_group.add_argument("--timeout", help="HTTP timeout in seconds.", dest="timeout", type=float, required=False)
    runtime_group.add_argument(
        "--connect-timeout",
        help="TLS connect timeout in seconds.",
        dest="connect_timeout",
        type=float,
        required=False,
    )
    runtime_group.add_argument(
        "--threads",
        help="Concurrent probes (default: one per target pair).",
        dest="threads",
        type=int,
        required=False,
    )

    output_group = parser.add_argument_group("Output")
    output_group.add_argument("-o", "--output", help="Report file path (default: vhosts_<timestamp>.txt).")
    output_group.add_argument("--format", help="Report file format.", choices=REPORT_FORMATS, default="text")
    output_group.add_argument("--json", help="JSON-only output on stdout (forces --silent).", action="store_true")
    output_group.add_argument("--silent", help="Silent mode (hide progress and summary).", action="store_true")
    output_group.add_argument("--no-save", help="Do not store this run in the local history.", action="store_true")
    output_group.add_argument("--status", help="Print effective runtime settings and continue.", action="store_true")

    setup_group = parser.add_argument_group("Setup and Reports")
    setup_group.add_argument(
        "--report",
        nargs="?",
        const="list",
        help="Without value: list stored runs. With 'latest', an id or a source path: show that run.",
    )
    setup_group.add_argument("--delete-report", help="Delete a stored run by id.", type=int, metavar="ID")
    setup_group.add_argument(
        "--set",
        nargs=2,
        metavar=("KEY", "VALUE"),
        help="Save a runtime default (runtime.dns, runtime.timeout, runtime.connect_timeout, runtime.threads).",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint.

    This function is responsible for argument parsing, config layering
    (CLI > saved setup > environment > defaults), mode dispatch and result
    handling. Setup errors exit non-zero; probe failures never do.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.json:
        args.silent = True

    if args.set:
        key, value = args.set
        try:
            stored = _save_runtime_setting(key, value)
        except ValueError as exc:
            _fatal(str(exc))
            return
        console.print(f"[green]Saved[/green] {escape(key)} = {escape(stored or '(unset)')}")
        return
    if args.report is not None:
        if not _report_mode(args.report):
            sys.exit(1)
        return
    if args.delete_report is not None:
        if not _delete_mode(args.delete_report):
            sys.exit(1)
        return

    try:
        settings = _effective_settings(args, _load_saved_runtime_settings())
    except ValueError as exc:
        _fatal(str(exc))
        return
    if args.status and not args.json:
        print_scan_status(settings, db_path=str(get_db_path()), run_count=count_runs())

    if not args.file:
        if args.status:
            return
        _fatal("No file specified (use -f <path>).")
        return

    try:
        records = load_records(args.file)
    except (OSError, UnicodeDecodeError) as exc:
        _fatal(f"Cannot read file: {args.file} ({exc})")
        return

    if not records and not args.json:
        err_console.print(f"[yellow]No records found in file:[/yellow] {escape(args.file)}")

    on_finding = None if args.json else print_finding
    start_time = datetime.now()
    if args.silent:
        findings = _run_scan(records, settings, on_finding=on_finding)
    else:
        findings = _run_with_rich_progress(records, settings, on_finding=on_finding)
    elapsed = datetime.now() - start_time
    target_count = count_targets(records)

    try:
        report_path = write_report(findings, args.format, args.output)
    except OSError as exc:
        _fatal(f"Cannot write report: {exc}")
        return

    if not args.no_save:
        try:
            run_id = save_run(
                str(Path(args.file).resolve()),
                settings,
                findings,
                elapsed,
                target_count=target_count,
            )
            if not args.silent:
                console.print(f"[green]Saved run #[/green]{run_id}")
        except (sqlite3.Error, OSError) as exc:
            err_console.print(f"[yellow]Could not save run history:[/yellow] {escape(str(exc))}")

    if args.json:
        _print_json_output(findings)
        return
    if not args.silent:
        output(findings, elapsed, target_count=target_count)
    console.print(f"[green]Results written to {escape(report_path)}[/green]")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted[/yellow]")
        try:
            sys.exit(0)
        except SystemExit:
            os._exit(0)
