from __future__ import annotations

"""Compatibility facade for vhostsniff core engine.

Public imports remain stable while implementation lives in `vhostsniff.engine`.
"""

from .engine.records import CertificateRecord, ProbeTarget, aggregate_records, load_records, lookup_name, parse_line
from .engine.results import (
    ConnectFailed,
    Finding,
    ProbeOutcome,
    ReadFailed,
    RequestFailed,
    ResultStore,
    Success,
    extract_title,
)
from .engine.runtime import *  # noqa: F401,F403
from .engine.runtime import _run_async, _run_coro_sync

__all__ = [
    "CertificateRecord",
    "ProbeTarget",
    "parse_line",
    "aggregate_records",
    "load_records",
    "lookup_name",
    "ProbeOutcome",
    "ConnectFailed",
    "RequestFailed",
    "ReadFailed",
    "Success",
    "Finding",
    "ResultStore",
    "extract_title",
    "DnsResolver",
    "PinnedTransport",
    "ProbeEngine",
    "VhostProbe",
    "VHOSTSNIFF",
    "count_targets",
    "default_dns_server",
    "fmt_td",
    "logger",
    "pin_request",
    "tls_dial",
    "_run_async",
    "_run_coro_sync",
]
