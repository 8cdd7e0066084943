from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..engine.results import Finding

REPORT_FORMATS = ("text", "json")
TEXT_HEADER = "##### Interesting Vhosts ##### "
FENCE = "-------------"


def default_report_name(export_format: str = "text", now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    suffix = "json" if export_format == "json" else "txt"
    return f"vhosts_{stamp}.{suffix}"


def render_text(findings: Sequence[Finding]) -> str:
    """Hosts-file style listing: `IP hostname` followed by a fenced detail block."""
    lines: List[str] = [TEXT_HEADER]
    for finding in findings:
        lines.append(f"{finding.ip} {finding.host}")
        lines.append(FENCE)
        lines.append(f"Status: {finding.status}")
        lines.append(f"Title: {finding.title}")
        if finding.cert_cn:
            lines.append(f"Cert CN: {finding.cert_cn}")
        lines.extend(finding.headers)
        if finding.body is not None:
            lines.append("Body:")
            lines.append(finding.body)
        lines.append(FENCE)
    return "\n".join(lines) + "\n"


def render_json(findings: Sequence[Finding]) -> str:
    return json.dumps([finding.to_dict() for finding in findings], indent=2, ensure_ascii=False) + "\n"


def write_report(
    findings: Sequence[Finding],
    export_format: str = "text",
    output_path: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Write findings to disk and return the written path.

    Without `output_path` the file is created in the working directory with a
    timestamped name. OS errors propagate to the caller.
    """
    if export_format not in REPORT_FORMATS:
        raise ValueError(f"Unsupported report format: {export_format}")

    out = Path(output_path) if output_path else Path.cwd() / default_report_name(export_format, now)
    if out.exists() and out.is_dir():
        raise IsADirectoryError(f"Output path is a directory: {out}")

    out.parent.mkdir(parents=True, exist_ok=True)
    content = render_json(findings) if export_format == "json" else render_text(findings)
    out.write_text(content, encoding="utf-8")
    return str(out)
