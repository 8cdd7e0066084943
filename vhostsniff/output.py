from __future__ import annotations

"""Terminal rendering helpers for vhostsniff.

This module contains presentation-only logic for live findings, the run
summary, runtime status and the stored-run catalog. It does not perform
network or persistence operations.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .core import Finding, fmt_td

console = Console()
err_console = Console(stderr=True)


KV_FIELD_WIDTH = 30
SUMMARY_HOST_WIDTH = 32
SUMMARY_IP_WIDTH = 18
SUMMARY_STATUS_WIDTH = 16


def _table_width() -> int:
    try:
        return max(80, int(console.size.width) - 2)
    except Exception:
        return 100


def _new_table(
    *,
    title: Optional[str] = None,
    box_style: Any = box.SIMPLE,
    show_header: bool = True,
    header_style: Optional[str] = None,
) -> Table:
    return Table(
        title=title,
        box=box_style,
        show_header=show_header,
        header_style=header_style,
        title_justify="left",
        width=_table_width(),
        expand=False,
        pad_edge=False,
    )


def _add_kv_columns(table: Table) -> None:
    value_width = max(24, _table_width() - KV_FIELD_WIDTH - 8)
    table.add_column("Field", style="cyan", width=KV_FIELD_WIDTH, min_width=KV_FIELD_WIDTH, max_width=KV_FIELD_WIDTH, no_wrap=True)
    table.add_column("Value", width=value_width, min_width=value_width, max_width=value_width, overflow="fold", no_wrap=False)


def _status_code(status: Optional[str]) -> Optional[int]:
    head = str(status or "").strip().split(" ", 1)[0]
    return int(head) if head.isdigit() else None


def _fmt_status(status: Optional[str]) -> str:
    code = _status_code(status)
    text = escape(str(status or "-"))
    if code is None:
        return f"[red]{text}[/red]"
    if code >= 400:
        return f"[red]{text}[/red]"
    if code >= 300:
        return f"[yellow]{text}[/yellow]"
    return f"[green]{text}[/green]"


def print_finding(finding: Finding) -> None:
    """Print a finding as soon as it is classified, like a live log line."""
    console.print(f"[green]Interesting Vhost: {escape(finding.host)}: {escape(finding.ip)}[/green]")
    console.print("-------------", highlight=False)
    console.print(f"Status: {_fmt_status(finding.status)}")
    console.print(f"Title: {escape(finding.title)}", highlight=False)
    if finding.cert_cn:
        console.print(f"Cert CN: {escape(finding.cert_cn)}", highlight=False)
    for line in finding.headers:
        console.print(escape(line), highlight=False)
    console.print("-------------", highlight=False)


def output(
    findings: Optional[Sequence[Finding]],
    elapsed: Optional[timedelta] = None,
    target_count: Optional[int] = None,
) -> None:
    """Render the compact summary table shown after a run."""
    if not findings:
        err_console.print("[yellow]No interesting vhosts found.[/yellow]")
    else:
        table = _new_table(box_style=box.SIMPLE_HEAVY, show_header=True, header_style="bold cyan")
        table.add_column("Host", style="cyan", width=SUMMARY_HOST_WIDTH, min_width=SUMMARY_HOST_WIDTH, max_width=SUMMARY_HOST_WIDTH, no_wrap=True, overflow="ellipsis")
        table.add_column("IP", style="white", width=SUMMARY_IP_WIDTH, min_width=SUMMARY_IP_WIDTH, max_width=SUMMARY_IP_WIDTH, no_wrap=False, overflow="fold")
        table.add_column("Status", justify="center", width=SUMMARY_STATUS_WIDTH, min_width=SUMMARY_STATUS_WIDTH, max_width=SUMMARY_STATUS_WIDTH, no_wrap=True)
        table.add_column("Title", overflow="fold", no_wrap=False)
        table.add_column("Cert CN", overflow="fold", no_wrap=False)
        for finding in findings:
            table.add_row(
                escape(finding.host),
                escape(finding.ip),
                _fmt_status(finding.status),
                escape(finding.title) or "-",
                escape(finding.cert_cn or "-"),
            )
        console.print(table)

    parts = [f"[bold]Findings:[/bold] {len(findings or [])}"]
    if target_count is not None:
        parts.append(f"[bold]Probes:[/bold] {target_count}")
    parts.append(f"[bold]Elapsed:[/bold] {fmt_td(elapsed)}")
    console.print(Panel.fit("  ".join(parts), border_style="cyan"))


def print_scan_status(settings: Dict[str, Any], db_path: Optional[str] = None, run_count: Optional[int] = None) -> None:
    threads = settings.get("threads")
    table = _new_table(title="Scan Status", box_style=box.MINIMAL_DOUBLE_HEAD)
    _add_kv_columns(table)

    table.add_row("DNS", str(settings.get("dns") or "system resolver"))
    table.add_row("Timeout", str(settings.get("timeout")))
    table.add_row("Connect Timeout", str(settings.get("connect_timeout")))
    table.add_row("Threads", "unbounded (one per probe)" if not threads else str(threads))
    table.add_row("Follow Redirects", str(bool(settings.get("follow_redirects"))))
    table.add_row("Capture Body", str(bool(settings.get("capture_body"))))
    table.add_row("Key By Host", str(bool(settings.get("key_by_host"))))
    if db_path is not None:
        table.add_row("Runs DB", db_path)
    if run_count is not None:
        table.add_row("Runs Count", str(run_count))

    console.print(table)


def show_runs_catalog(runs: List[Dict[str, Any]]) -> None:
    if not runs:
        err_console.print("[yellow]No runs found in database.[/yellow]")
        return

    table = _new_table(title="Stored Runs", box_style=box.SIMPLE_HEAVY, header_style="bold cyan")
    table.add_column("ID", justify="right", no_wrap=True)
    table.add_column("Created", no_wrap=True)
    table.add_column("Source", overflow="fold")
    table.add_column("Probes", justify="right", no_wrap=True)
    table.add_column("Findings", justify="right", no_wrap=True)
    table.add_column("Elapsed", justify="right", no_wrap=True)
    for run in runs:
        elapsed = run.get("elapsed_seconds")
        table.add_row(
            str(run.get("id")),
            str(run.get("created_at") or "-"),
            escape(str(run.get("source") or "-")),
            str(run.get("target_count") or 0),
            str(run.get("finding_count") or 0),
            fmt_td(timedelta(seconds=float(elapsed))) if elapsed is not None else "-",
        )
    console.print(table)
