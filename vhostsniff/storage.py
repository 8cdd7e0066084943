from __future__ import annotations

"""Persistence and report export facade for vhostsniff.

Public storage API remains stable while implementation is split by concern:
- `vhostsniff.storage_parts.db`: SQLite run history and settings
- `vhostsniff.storage_parts.export`: text/JSON report files
"""

from .storage_parts.db import (
    count_runs,
    delete_run,
    get_db_path,
    get_run,
    get_setting,
    get_settings,
    init_db,
    list_runs,
    save_run,
    set_setting,
)
from .storage_parts.export import REPORT_FORMATS, default_report_name, render_json, render_text, write_report

__all__ = [
    "get_db_path",
    "init_db",
    "save_run",
    "list_runs",
    "count_runs",
    "get_run",
    "delete_run",
    "get_setting",
    "get_settings",
    "set_setting",
    "REPORT_FORMATS",
    "default_report_name",
    "render_text",
    "render_json",
    "write_report",
]
