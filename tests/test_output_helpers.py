from datetime import timedelta

from vhostsniff.core import Finding
from vhostsniff.output import _fmt_status, _status_code, output, print_finding


def test_status_code_parses_leading_number():
    assert _status_code("200 OK") == 200
    assert _status_code("404") == 404
    assert _status_code("") is None
    assert _status_code(None) is None


def test_fmt_status_colors_by_class():
    assert _fmt_status("200 OK") == "[green]200 OK[/green]"
    assert _fmt_status("301 Moved Permanently") == "[yellow]301 Moved Permanently[/yellow]"
    assert _fmt_status("503 Service Unavailable") == "[red]503 Service Unavailable[/red]"
    assert _fmt_status(None) == "[red]-[/red]"


def test_print_finding_block(capsys):
    finding = Finding(
        host="internal.example.com",
        ip="10.0.0.5",
        status="200 OK",
        title="Admin [beta]",
        headers=["Server: nginx"],
    )
    print_finding(finding)
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Interesting Vhost: internal.example.com: 10.0.0.5"
    assert "Status: 200 OK" in lines
    assert "Title: Admin [beta]" in lines
    assert "Server: nginx" in lines
    assert lines.count("-------------") == 2


def test_output_summary_without_findings(capsys):
    output([], timedelta(seconds=65), target_count=4)
    captured = capsys.readouterr()
    assert "No interesting vhosts found." in captured.err
    assert "Findings: 0" in captured.out
    assert "Probes: 4" in captured.out
    assert "00:01:05" in captured.out
