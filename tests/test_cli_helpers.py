from __future__ import annotations

import json
from pathlib import Path

import pytest

import vhostsniff.cli as cli
from vhostsniff.cli_parts.setup import load_saved_runtime_settings, save_runtime_setting
from vhostsniff.core import Finding
from vhostsniff.storage import count_runs, get_run


@pytest.fixture(autouse=True)
def _isolated_db(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("VHOSTSNIFF_DB", str(tmp_path / "runs.db"))
    monkeypatch.delenv("VHOSTSNIFF_DNS", raising=False)


def _report_file(tmp_path: Path) -> Path:
    source = tmp_path / "certs.txt"
    source.write_text("10.0.0.5 [internal.example.com]\n10.0.0.5 [www.example.com]\n", encoding="utf-8")
    return source


def _fake_scan(findings):
    calls = []

    def run_scan(records, settings, on_finding=None, progress_callback=None):
        calls.append((records, settings))
        for finding in findings:
            if on_finding:
                on_finding(finding)
        return list(findings)

    return run_scan, calls


def test_main_without_file_exits_non_zero():
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 1


def test_main_with_unreadable_file_exits_non_zero(tmp_path: Path):
    with pytest.raises(SystemExit) as exc:
        cli.main(["-f", str(tmp_path / "missing.txt")])
    assert exc.value.code == 1


def test_set_rejects_unknown_key_and_bad_value():
    with pytest.raises(SystemExit):
        cli.main(["--set", "runtime.bogus", "1"])
    with pytest.raises(SystemExit):
        cli.main(["--set", "runtime.timeout", "-3"])
    with pytest.raises(ValueError):
        save_runtime_setting("runtime.threads", "zero")


def test_saved_settings_layer_over_environment(monkeypatch):
    monkeypatch.setenv("VHOSTSNIFF_DNS", "9.9.9.9")
    defaults = load_saved_runtime_settings()
    assert defaults == {"dns": "9.9.9.9", "timeout": 30.0, "connect_timeout": 30.0, "threads": None}

    cli.main(["--set", "runtime.timeout", "12"])
    cli.main(["--set", "runtime.dns", "1.1.1.1"])
    cli.main(["--set", "runtime.threads", "8"])
    saved = load_saved_runtime_settings()
    assert saved == {"dns": "1.1.1.1", "timeout": 12.0, "connect_timeout": 30.0, "threads": 8}

    cli.main(["--set", "runtime.dns", ""])
    assert load_saved_runtime_settings()["dns"] == "9.9.9.9"


def test_effective_settings_cli_overrides_saved():
    saved = {"dns": "1.1.1.1", "timeout": 12.0, "connect_timeout": 30.0, "threads": 8}
    args = cli.build_parser().parse_args(["--dns", "8.8.8.8", "--timeout", "5", "-b", "--key-by-host"])
    settings = cli._effective_settings(args, saved)
    assert settings["dns"] == "8.8.8.8"
    assert settings["timeout"] == 5.0
    assert settings["connect_timeout"] == 30.0
    assert settings["threads"] == 8
    assert settings["capture_body"] is True
    assert settings["key_by_host"] is True
    assert settings["follow_redirects"] is False

    plain = cli._effective_settings(cli.build_parser().parse_args([]), saved)
    assert plain["dns"] == "1.1.1.1"
    assert plain["timeout"] == 12.0


def test_main_writes_report_and_saves_run(tmp_path: Path, monkeypatch):
    finding = Finding(host="internal.example.com", ip="10.0.0.5", status="200 OK", title="Admin", headers=["Server: nginx"])
    run_scan, calls = _fake_scan([finding])
    monkeypatch.setattr(cli, "_run_scan", run_scan)
    out = tmp_path / "vhosts.txt"

    cli.main(["-f", str(_report_file(tmp_path)), "--silent", "-o", str(out), "--threads", "4"])

    records, settings = calls[0]
    assert [record.hostname for record in records] == ["10.0.0.5"]
    assert records[0].san_names == ["internal.example.com", "www.example.com"]
    assert settings["threads"] == 4
    assert "10.0.0.5 internal.example.com" in out.read_text(encoding="utf-8")

    run = get_run("latest")
    assert run is not None
    assert run["target_count"] == 0
    assert run["findings"] == [finding]


def test_main_json_output_and_no_save(tmp_path: Path, monkeypatch, capsys):
    finding = Finding(host="internal.example.com", ip="10.0.0.5", status="302 Found", title="")
    run_scan, _ = _fake_scan([finding])
    monkeypatch.setattr(cli, "_run_scan", run_scan)
    out = tmp_path / "vhosts.json"

    cli.main(["-f", str(_report_file(tmp_path)), "--json", "--no-save", "--format", "json", "-o", str(out)])

    printed = json.loads(capsys.readouterr().out)
    assert printed == [finding.to_dict()]
    assert json.loads(out.read_text(encoding="utf-8")) == [finding.to_dict()]
    assert count_runs() == 0


def test_report_and_delete_modes(tmp_path: Path, monkeypatch):
    run_scan, _ = _fake_scan([])
    monkeypatch.setattr(cli, "_run_scan", run_scan)
    cli.main(["-f", str(_report_file(tmp_path)), "--silent", "-o", str(tmp_path / "out.txt")])
    run_id = get_run("latest")["id"]

    cli.main(["--report"])
    cli.main(["--report", "latest"])
    with pytest.raises(SystemExit):
        cli.main(["--report", "999"])

    cli.main(["--delete-report", str(run_id)])
    assert count_runs() == 0
    with pytest.raises(SystemExit):
        cli.main(["--delete-report", str(run_id)])


def test_invalid_dns_server_is_fatal(tmp_path: Path, monkeypatch, capsys):
    run_scan, calls = _fake_scan([])
    monkeypatch.setattr(cli, "_run_scan", run_scan)

    with pytest.raises(SystemExit) as exc:
        cli.main(["-f", str(_report_file(tmp_path)), "--dns", "not-a-server", "--silent", "--no-save"])
    assert exc.value.code == 1
    assert "Invalid DNS server: not-a-server" in capsys.readouterr().err
    assert calls == []


def test_invalid_dns_server_rejected_by_set_and_environment(tmp_path: Path, monkeypatch):
    with pytest.raises(SystemExit):
        cli.main(["--set", "runtime.dns", "not-a-server"])
    assert load_saved_runtime_settings()["dns"] is None

    monkeypatch.setenv("VHOSTSNIFF_DNS", "resolver.local")
    with pytest.raises(SystemExit) as exc:
        cli.main(["-f", str(_report_file(tmp_path)), "--silent", "--no-save"])
    assert exc.value.code == 1

    cli.main(["--set", "runtime.dns", "2001:4860:4860::8888"])
    assert load_saved_runtime_settings()["dns"] == "2001:4860:4860::8888"
