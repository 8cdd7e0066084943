from __future__ import annotations

import json
import os
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..engine.results import Finding


def _harden_user_file(path: Path) -> None:
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass


def get_db_path() -> Path:
    custom = os.getenv("VHOSTSNIFF_DB")
    if custom:
        path = Path(custom).expanduser().resolve()
    else:
        path = Path.home() / ".vhostsniff" / "runs.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def init_db(db_path: Optional[Path] = None) -> Path:
    """Initialize DB schema and return DB path.

    Called by all storage entrypoints to ensure schema is available.
    """
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                source TEXT NOT NULL,
                settings_json TEXT NOT NULL,
                elapsed_seconds REAL,
                target_count INTEGER NOT NULL,
                finding_count INTEGER NOT NULL,
                findings_json TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_created ON runs(created_at DESC)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_source ON runs(source)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        conn.commit()
    finally:
        conn.close()
    _harden_user_file(path)
    return path


def _finding_rows(findings: Optional[Sequence[Union[Finding, Dict[str, Any]]]]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for item in findings or []:
        rows.append(item.to_dict() if isinstance(item, Finding) else dict(item))
    return rows


def save_run(
    source: str,
    settings: Dict[str, Any],
    findings: Optional[Sequence[Union[Finding, Dict[str, Any]]]],
    elapsed: Optional[timedelta],
    target_count: int = 0,
    db_path: Optional[Path] = None,
) -> int:
    path = init_db(db_path)
    rows = _finding_rows(findings)
    elapsed_seconds = elapsed.total_seconds() if elapsed else None

    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO runs (source, settings_json, elapsed_seconds, target_count, finding_count, findings_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                source,
                json.dumps(settings, ensure_ascii=False),
                elapsed_seconds,
                int(target_count),
                len(rows),
                json.dumps(rows, ensure_ascii=False),
            ),
        )
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def list_runs(limit: int = 50, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(
            """
            SELECT id, created_at, source, target_count, finding_count, elapsed_seconds
            FROM runs
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def count_runs(db_path: Optional[Path] = None) -> int:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("SELECT COUNT(*) FROM runs").fetchone()
        return int(row[0]) if row else 0
    finally:
        conn.close()


def get_run(selector: Optional[str], db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Fetch one stored run by `latest`, numeric id or source path.

    The returned dict carries decoded `settings` and `findings` (list of
    `Finding`) instead of the raw JSON columns.
    """
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row

    if selector is None or selector == "latest":
        query = "SELECT * FROM runs ORDER BY id DESC LIMIT 1"
        params: tuple[Any, ...] = ()
    elif str(selector).isdigit():
        query = "SELECT * FROM runs WHERE id = ?"
        params = (int(selector),)
    else:
        query = "SELECT * FROM runs WHERE source = ? ORDER BY id DESC LIMIT 1"
        params = (str(selector),)

    try:
        row = conn.execute(query, params).fetchone()
        if not row:
            return None
        data = dict(row)
        data["settings"] = json.loads(data.pop("settings_json"))
        data["findings"] = [Finding.from_dict(item) for item in json.loads(data.pop("findings_json"))]
        return data
    finally:
        conn.close()


def delete_run(run_id: int, db_path: Optional[Path] = None) -> bool:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM runs WHERE id = ?", (run_id,))
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def get_setting(key: str, db_path: Optional[Path] = None) -> Optional[str]:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return str(row[0]) if row and row[0] is not None else None
    finally:
        conn.close()


def get_settings(prefix: Optional[str] = None, db_path: Optional[Path] = None) -> Dict[str, Optional[str]]:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    try:
        if prefix:
            rows = conn.execute(
                "SELECT key, value FROM settings WHERE key LIKE ? ORDER BY key",
                (f"{prefix}%",),
            ).fetchall()
        else:
            rows = conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {str(k): (None if v is None else str(v)) for k, v in rows}
    finally:
        conn.close()


def set_setting(key: str, value: Optional[str], db_path: Optional[Path] = None) -> None:
    path = init_db(db_path)
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=datetime('now')
            """,
            (key, value),
        )
        conn.commit()
    finally:
        conn.close()
