from __future__ import annotations

from pathlib import Path

from vhostsniff.core import CertificateRecord, aggregate_records, load_records, lookup_name, parse_line
from vhostsniff.engine.records import probe_targets


def test_parse_line_trims_brackets_and_skips_short_lines():
    assert parse_line("example.com [www.example.com]") == ("example.com", "www.example.com")
    assert parse_line("example.com www.example.com") == ("example.com", "www.example.com")
    assert parse_line("   ") is None
    assert parse_line("") is None
    assert parse_line("example.com") is None
    assert parse_line("example.com []") is None


def test_parse_line_uses_only_first_san_token():
    assert parse_line("example.com [a.example.com b.example.com]") == ("example.com", "a.example.com")


def test_parse_line_tolerates_unbalanced_brackets():
    assert parse_line("example.com [a.example.com") == ("example.com", "a.example.com")
    assert parse_line("example.com a.example.com]") == ("example.com", "a.example.com")


def test_aggregate_records_deduplicates_hosts_and_sans_in_first_seen_order():
    lines = [
        "b.example.com [x.example.com]",
        "a.example.com [y.example.com]",
        "b.example.com [z.example.com]",
        "b.example.com [x.example.com]",
        "",
        "lonely",
        "a.example.com y.example.com",
    ]
    records = aggregate_records(lines)
    assert [r.hostname for r in records] == ["b.example.com", "a.example.com"]
    assert records[0].san_names == ["x.example.com", "z.example.com"]
    assert records[1].san_names == ["y.example.com"]
    assert all(r.resolved_ips == [] for r in records)


def test_aggregate_records_is_idempotent():
    lines = ["h1 [s1]", "h1 [s2]", "h2 [s1]", "h1 [s1]"]
    first = aggregate_records(lines)
    second = aggregate_records(lines)
    assert [(r.hostname, r.san_names) for r in first] == [(r.hostname, r.san_names) for r in second]


def test_load_records_reads_utf8_file(tmp_path: Path):
    source = tmp_path / "tlsx.txt"
    source.write_text("\nhost.example.com [internal.example.com]\nhost.example.com [admin.example.com]\n", encoding="utf-8")
    records = load_records(source)
    assert len(records) == 1
    assert records[0].san_names == ["internal.example.com", "admin.example.com"]


def test_lookup_name_strips_scheme_and_https_port():
    assert lookup_name("https://example.com:443") == "example.com"
    assert lookup_name("example.com:443") == "example.com"
    assert lookup_name("https://example.com/path") == "example.com"
    assert lookup_name("10.0.0.5") == "10.0.0.5"


def test_probe_targets_is_full_cross_product():
    record = CertificateRecord("host", san_names=["a", "b", "c"], resolved_ips=["10.0.0.1", "10.0.0.2"])
    targets = probe_targets(record)
    assert len(targets) == 6
    assert len(set(targets)) == 6
    assert {(t.name, t.ip) for t in targets} == {(n, ip) for n in "abc" for ip in ("10.0.0.1", "10.0.0.2")}


def test_probe_targets_empty_without_ips():
    assert probe_targets(CertificateRecord("host", san_names=["a"])) == []
