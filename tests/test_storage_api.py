from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from vhostsniff.core import Finding
from vhostsniff.storage import (
    count_runs,
    delete_run,
    get_run,
    get_setting,
    get_settings,
    init_db,
    list_runs,
    save_run,
    set_setting,
)


def _finding(host: str = "internal.example.com") -> Finding:
    return Finding(
        host=host,
        ip="10.0.0.5",
        status="200 OK",
        title="Admin",
        headers=["Server: nginx"],
        cert_cn="internal.example.com",
    )


def test_storage_run_lifecycle_roundtrip(tmp_path: Path):
    db_path = tmp_path / "runs.db"
    init_db(db_path)
    assert db_path.exists()

    run_id = save_run(
        source="/tmp/report.txt",
        settings={"timeout": 30.0, "threads": None},
        findings=[_finding()],
        elapsed=timedelta(seconds=4),
        target_count=6,
        db_path=db_path,
    )
    assert run_id > 0
    assert count_runs(db_path) == 1

    runs = list_runs(limit=10, db_path=db_path)
    assert len(runs) == 1
    assert runs[0]["id"] == run_id
    assert runs[0]["source"] == "/tmp/report.txt"
    assert runs[0]["target_count"] == 6
    assert runs[0]["finding_count"] == 1

    by_latest = get_run("latest", db_path=db_path)
    assert by_latest is not None
    assert by_latest["id"] == run_id
    assert by_latest["settings"] == {"timeout": 30.0, "threads": None}
    assert by_latest["elapsed_seconds"] == 4.0
    assert by_latest["findings"] == [_finding()]

    by_id = get_run(str(run_id), db_path=db_path)
    assert by_id is not None
    assert by_id["id"] == run_id

    by_source = get_run("/tmp/report.txt", db_path=db_path)
    assert by_source is not None
    assert by_source["id"] == run_id

    assert get_run("999", db_path=db_path) is None

    assert delete_run(run_id, db_path=db_path) is True
    assert count_runs(db_path) == 0
    assert delete_run(run_id, db_path=db_path) is False
    assert get_run("latest", db_path=db_path) is None


def test_storage_accepts_plain_dict_findings(tmp_path: Path):
    db_path = tmp_path / "runs.db"
    save_run(
        source="lines",
        settings={},
        findings=[{"host": "a.example.com", "ip": "10.0.0.1", "status": "302 Found", "title": "", "headers": []}],
        elapsed=None,
        db_path=db_path,
    )
    run = get_run("latest", db_path=db_path)
    assert run is not None
    assert run["elapsed_seconds"] is None
    assert run["findings"][0].status == "302 Found"
    assert run["findings"][0].body is None


def test_list_runs_newest_first(tmp_path: Path):
    db_path = tmp_path / "runs.db"
    ids = [save_run(f"report-{idx}.txt", {}, [], None, db_path=db_path) for idx in range(3)]
    runs = list_runs(db_path=db_path)
    assert [run["id"] for run in runs] == list(reversed(ids))
    assert [run["id"] for run in list_runs(limit=2, db_path=db_path)] == list(reversed(ids))[:2]


def test_storage_settings_roundtrip(tmp_path: Path):
    db_path = tmp_path / "runs.db"
    init_db(db_path)

    set_setting("runtime.timeout", "4", db_path=db_path)
    set_setting("runtime.threads", "120", db_path=db_path)
    set_setting("runtime.dns", None, db_path=db_path)
    set_setting("other.key", "x", db_path=db_path)

    assert get_setting("runtime.timeout", db_path=db_path) == "4"
    assert get_setting("runtime.threads", db_path=db_path) == "120"
    assert get_setting("runtime.dns", db_path=db_path) is None
    assert get_setting("missing", db_path=db_path) is None

    set_setting("runtime.timeout", "8", db_path=db_path)
    assert get_setting("runtime.timeout", db_path=db_path) == "8"

    runtime_only = get_settings(prefix="runtime.", db_path=db_path)
    assert sorted(runtime_only.keys()) == ["runtime.dns", "runtime.threads", "runtime.timeout"]
    assert "other.key" in get_settings(db_path=db_path)


def test_db_path_from_environment(tmp_path: Path, monkeypatch):
    from vhostsniff.storage import get_db_path

    target = tmp_path / "nested" / "custom.db"
    monkeypatch.setenv("VHOSTSNIFF_DB", str(target))
    assert get_db_path() == target.resolve()
    assert target.parent.is_dir()
