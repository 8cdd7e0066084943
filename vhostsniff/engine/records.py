from __future__ import annotations

"""Input parsing for certificate reconnaissance reports.

Each line of the report is `<hostname> [<san>]`. Lines are folded into one
`CertificateRecord` per hostname, keeping first-seen order for both hostnames
and SAN names so repeated runs over the same input are deterministic.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union


@dataclass
class CertificateRecord:
    hostname: str
    san_names: List[str] = field(default_factory=list)
    resolved_ips: List[str] = field(default_factory=list)

    def add_san(self, san: str) -> bool:
        if san in self.san_names:
            return False
        self.san_names.append(san)
        return True


@dataclass(frozen=True)
class ProbeTarget:
    name: str
    ip: str


def parse_line(line: str) -> Optional[Tuple[str, str]]:
    """Split one report line into `(hostname, san)`.

    Returns None for blank lines, lines with a single token and lines whose
    SAN token is empty once the surrounding brackets are trimmed.
    """
    parts = (line or "").strip().split()
    if len(parts) < 2:
        return None
    san = parts[1].strip("[]")
    if not san:
        return None
    return parts[0], san


def aggregate_records(lines: Iterable[str]) -> List[CertificateRecord]:
    records: Dict[str, CertificateRecord] = {}
    for raw in lines:
        parsed = parse_line(raw)
        if parsed is None:
            continue
        hostname, san = parsed
        record = records.get(hostname)
        if record is None:
            record = CertificateRecord(hostname=hostname)
            records[hostname] = record
        record.add_san(san)
    return list(records.values())


def load_records(path: Union[str, Path]) -> List[CertificateRecord]:
    with Path(path).open("r", encoding="utf-8") as fh:
        return aggregate_records(fh)


def lookup_name(hostname: str) -> str:
    """Name used to resolve the IPs serving a record's certificate."""
    host = (hostname or "").strip()
    host = re.sub(r"^\w+://", "", host)
    host = host.split("/", 1)[0]
    if host.endswith(":443"):
        host = host[: -len(":443")]
    return host


def probe_targets(record: CertificateRecord) -> List[ProbeTarget]:
    return [ProbeTarget(name=san, ip=ip) for san in record.san_names for ip in record.resolved_ips]
