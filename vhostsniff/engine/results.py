from __future__ import annotations

"""Probe outcomes, findings and the concurrent findings store."""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

TITLE_OPEN = "<title>"
TITLE_CLOSE = "</title>"


@dataclass
class ProbeOutcome:
    name: str
    ip: str

    @property
    def ok(self) -> bool:
        return False


@dataclass
class ConnectFailed(ProbeOutcome):
    error: str = ""


@dataclass
class RequestFailed(ProbeOutcome):
    error: str = ""


@dataclass
class ReadFailed(ProbeOutcome):
    error: str = ""


@dataclass
class Success(ProbeOutcome):
    status: str = ""
    headers: "OrderedDict[str, List[str]]" = field(default_factory=OrderedDict)
    body: bytes = b""
    title: str = ""
    cert_cn: Optional[str] = None

    @property
    def ok(self) -> bool:
        return True


def extract_title(body: Union[bytes, str, None]) -> str:
    """Return the text between the first `<title>` and the following `</title>`.

    Markers are matched case-sensitively. An unterminated title yields "".
    """
    if not body:
        return ""
    text = body.decode("utf-8", errors="ignore") if isinstance(body, bytes) else body
    start = text.find(TITLE_OPEN)
    if start < 0:
        return ""
    start += len(TITLE_OPEN)
    end = text.find(TITLE_CLOSE, start)
    if end < 0:
        return ""
    return text[start:end]


def canonical_header_key(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def group_headers(raw: List[Tuple[Union[bytes, str], Union[bytes, str]]]) -> "OrderedDict[str, List[str]]":
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for key, value in raw:
        k = key.decode("latin-1") if isinstance(key, bytes) else str(key)
        v = value.decode("latin-1") if isinstance(value, bytes) else str(value)
        grouped.setdefault(canonical_header_key(k), []).append(v)
    return grouped


def format_headers(headers: Dict[str, List[str]]) -> List[str]:
    return [f"{key}: {' '.join(values)}" for key, values in headers.items()]


@dataclass
class Finding:
    host: str
    ip: str
    status: str
    title: str
    headers: List[str] = field(default_factory=list)
    body: Optional[str] = None
    cert_cn: Optional[str] = None

    @classmethod
    def from_success(cls, outcome: Success, capture_body: bool = False) -> "Finding":
        body = outcome.body.decode("utf-8", errors="replace") if capture_body else None
        return cls(
            host=outcome.name,
            ip=outcome.ip,
            status=outcome.status,
            title=outcome.title,
            headers=format_headers(outcome.headers),
            body=body,
            cert_cn=outcome.cert_cn,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "host": self.host,
            "ip": self.ip,
            "status": self.status,
            "title": self.title,
            "headers": list(self.headers),
        }
        if self.body is not None:
            data["body"] = self.body
        if self.cert_cn is not None:
            data["cert_cn"] = self.cert_cn
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        return cls(
            host=str(data.get("host") or ""),
            ip=str(data.get("ip") or ""),
            status=str(data.get("status") or ""),
            title=str(data.get("title") or ""),
            headers=[str(h) for h in data.get("headers") or []],
            body=data.get("body"),
            cert_cn=data.get("cert_cn"),
        )


class ResultStore:
    """Insert-only findings accumulator shared by all probe tasks.

    Findings are keyed by `(host, ip)`. With `key_by_host=True` the key is the
    hostname alone and a later finding for a host replaces the earlier one,
    keeping its original position.
    """

    def __init__(self, key_by_host: bool = False):
        self.key_by_host = key_by_host
        self._lock = threading.Lock()
        self._items: "OrderedDict[Union[str, Tuple[str, str]], Finding]" = OrderedDict()

    def _key(self, finding: Finding) -> Union[str, Tuple[str, str]]:
        if self.key_by_host:
            return finding.host
        return (finding.host, finding.ip)

    def add(self, finding: Finding) -> bool:
        key = self._key(finding)
        with self._lock:
            is_new = key not in self._items
            self._items[key] = finding
            return is_new

    def drain(self) -> List[Finding]:
        with self._lock:
            findings = list(self._items.values())
            self._items.clear()
            return findings

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
