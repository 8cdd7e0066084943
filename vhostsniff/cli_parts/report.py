from __future__ import annotations

from datetime import timedelta

from rich.markup import escape
from rich.panel import Panel

from ..output import console, err_console, output, print_finding, show_runs_catalog
from ..storage import delete_run, get_run, list_runs


def _show_single_run(run: dict) -> None:
    elapsed = None
    if run.get("elapsed_seconds") is not None:
        elapsed = timedelta(seconds=float(run["elapsed_seconds"]))

    console.print(
        Panel.fit(
            f"[bold]Run[/bold] #{run['id']}  [bold]Source:[/bold] {escape(str(run['source']))}  "
            f"[bold]Created:[/bold] {run['created_at']}",
            border_style="blue",
        )
    )
    findings = run.get("findings") or []
    for finding in findings:
        print_finding(finding)
    output(findings, elapsed, target_count=run.get("target_count"))


def report_mode(selector: str) -> bool:
    """List stored runs (`list`) or show one by `latest`, id or source path.

    Returns False when the requested run does not exist.
    """
    if selector == "list":
        show_runs_catalog(list_runs())
        return True

    run = get_run(selector)
    if run is None:
        err_console.print(f"[red]Run not found:[/red] {escape(selector)}")
        return False
    _show_single_run(run)
    return True


def delete_mode(run_id: int) -> bool:
    if delete_run(run_id):
        console.print(f"[green]Deleted run #[/green]{run_id}")
        return True
    err_console.print(f"[red]Run not found:[/red] {run_id}")
    return False
