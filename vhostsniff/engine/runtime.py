from __future__ import annotations

"""Core probing engine for vhostsniff.

This module contains the runtime used by both CLI and Python API:
- DNS resolution of record hostnames and probed names (`DnsResolver`)
- per-(name, ip) verification: forced-SNI TLS dial, then an HTTP GET over a
  connection pinned to the IP (`VhostProbe`, `PinnedTransport`)
- resolvability classification and result collection (`ProbeEngine`)
- orchestration helpers (`_run_async`, `VHOSTSNIFF`)

Keep logic in this file side-effect free where possible, because it is imported
from both `vhostsniff/cli.py` and external user scripts.
"""

import asyncio
import ipaddress
import logging
import os
import socket
import ssl
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import dns.exception
import dns.resolver
import httpx
import OpenSSL
from dotenv import load_dotenv

from ..version import __version__
from .records import CertificateRecord, ProbeTarget, aggregate_records, load_records, lookup_name, probe_targets
from .results import (
    ConnectFailed,
    Finding,
    ProbeOutcome,
    ReadFailed,
    RequestFailed,
    ResultStore,
    Success,
    extract_title,
    group_headers,
)

load_dotenv()

HTTPS_PORT = 443
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_KEEPALIVE = 30.0
DEFAULT_DNS_TIMEOUT = 5.0
USER_AGENT = f"vhostsniff/{__version__}"

logger = logging.getLogger("vhostsniff")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S"))
    logger.addHandler(handler)

Resolver = Callable[[str], Optional[List[str]]]
TlsDialer = Callable[[str, str, int, float, float], Optional[str]]
TransportFactory = Callable[[str, str], httpx.AsyncBaseTransport]


def fmt_td(td: Optional[timedelta]) -> str:
    if td is None:
        return "-"
    total_seconds = int(td.total_seconds())
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def default_dns_server() -> Optional[str]:
    value = (os.getenv("VHOSTSNIFF_DNS") or "").strip()
    return value or None


def _error_text(exc: BaseException) -> str:
    message = str(exc).strip()
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__


class DnsResolver:
    """A/AAAA lookups through dnspython with a small TTL cache.

    Callable with a name; returns the resolved addresses or None when the
    name does not resolve (NXDOMAIN, no answer, resolver error or timeout).
    Safe to call from executor threads.
    """

    POSITIVE_TTL = 300.0
    NEGATIVE_TTL = 30.0

    def __init__(self, dns_server: Optional[str] = None, timeout: float = DEFAULT_DNS_TIMEOUT):
        self.dns_server = dns_server
        self.timeout = timeout
        self._cache: Dict[str, Tuple[float, Optional[List[str]]]] = {}
        self._lock = threading.Lock()

    def _resolver(self) -> dns.resolver.Resolver:
        if self.dns_server:
            resolver = dns.resolver.Resolver(configure=False)
            resolver.nameservers = [self.dns_server]
        else:
            resolver = dns.resolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = max(self.timeout * 2, self.timeout + 1.0)
        return resolver

    def resolve(self, name: str) -> Optional[List[str]]:
        key = (name or "").strip().lower().rstrip(".")
        if not key:
            return None

        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None and cached[0] > now:
            return cached[1]

        ips, ttl = self._lookup(key)
        with self._lock:
            self._cache[key] = (now + ttl, ips)
        return ips

    __call__ = resolve

    def _lookup(self, name: str) -> Tuple[Optional[List[str]], float]:
        try:
            resolver = self._resolver()
        except dns.resolver.NoResolverConfiguration:
            return None, self.NEGATIVE_TTL

        ips: List[str] = []
        min_ttl = self.POSITIVE_TTL
        for qtype in ("A", "AAAA"):
            try:
                answers = resolver.resolve(name, qtype)
            except (dns.resolver.NXDOMAIN, dns.resolver.YXDOMAIN):
                return None, self.NEGATIVE_TTL
            except (dns.resolver.NoAnswer, dns.resolver.NoNameservers, dns.exception.Timeout):
                continue
            except dns.exception.DNSException:
                continue

            if answers.rrset is not None and answers.rrset.ttl is not None:
                min_ttl = min(min_ttl, float(max(answers.rrset.ttl, 1)))
            for rr in answers:
                ip_text = str(rr).strip()
                try:
                    ipaddress.ip_address(ip_text)
                except ValueError:
                    continue
                if ip_text not in ips:
                    ips.append(ip_text)

        if not ips:
            return None, self.NEGATIVE_TTL
        return ips, min_ttl


def keepalive_socket_options(keepalive: float) -> List[Tuple[int, int, int]]:
    interval = max(1, int(keepalive))
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    for opt_name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
        opt = getattr(socket, opt_name, None)
        if opt is not None:
            options.append((socket.IPPROTO_TCP, opt, interval))
    return options


def _cert_common_name(der_cert: Optional[bytes]) -> Optional[str]:
    if not der_cert:
        return None
    try:
        x509 = OpenSSL.crypto.load_certificate(OpenSSL.crypto.FILETYPE_ASN1, der_cert)
    except OpenSSL.crypto.Error:
        return None
    return x509.get_subject().commonName or None


def tls_dial(
    name: str,
    ip: str,
    port: int = HTTPS_PORT,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    keepalive: float = DEFAULT_KEEPALIVE,
) -> Optional[str]:
    """Complete a TLS handshake with `ip:port` advertising `name` via SNI.

    Certificate verification is disabled: the peer is addressed by IP and its
    certificate is expected not to match. Returns the presented certificate's
    Common Name. Connection and handshake errors propagate.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    with socket.create_connection((ip, int(port)), timeout=connect_timeout) as sock:
        for level, opt, value in keepalive_socket_options(keepalive):
            sock.setsockopt(level, opt, value)
        with ctx.wrap_socket(sock, server_hostname=name) as tls_sock:
            der_cert = tls_sock.getpeercert(binary_form=True)
    return _cert_common_name(der_cert)


def _is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return False
    return True


def _url_host(ip: str) -> str:
    return f"[{ip}]" if ":" in ip else ip


def pin_request(request: httpx.Request, name: str, ip: str, port: int = HTTPS_PORT) -> bool:
    """Route a request aimed at exactly `https://name:port` to `ip:port`.

    The request keeps `Host: name` and carries `sni_hostname=name` so the TLS
    layer still advertises the vhost. Returns False (request untouched) for
    any other target.
    """
    url = request.url
    if url.scheme != "https" or (url.host or "").lower() != name.lower() or (url.port or HTTPS_PORT) != port:
        return False
    request.url = url.copy_with(host=_url_host(ip))
    request.extensions = {**request.extensions, "sni_hostname": name}
    request.headers["Host"] = name
    return True


class PinnedTransport(httpx.AsyncHTTPTransport):
    """HTTP transport bound to a single (name, ip) pair.

    One instance is created per probe, so the redirection target is never
    shared between concurrent probes and pooled connections never carry an
    SNI negotiated for another name.
    """

    def __init__(self, name: str, ip: str, port: int = HTTPS_PORT, **kwargs: Any):
        super().__init__(**kwargs)
        self.name = name
        self.ip = ip
        self.port = port

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        original_url = request.url
        original_extensions = request.extensions
        pinned = pin_request(request, self.name, self.ip, self.port)
        try:
            return await super().handle_async_request(request)
        finally:
            if pinned:
                # Redirect handling resolves Location against request.url.
                request.url = original_url
                request.extensions = original_extensions


def pinned_transport(name: str, ip: str, keepalive: float = DEFAULT_KEEPALIVE) -> PinnedTransport:
    return PinnedTransport(
        name,
        ip,
        verify=False,
        http2=False,
        retries=0,
        socket_options=keepalive_socket_options(keepalive),
    )


class VhostProbe:
    """Verify one (name, ip) pair and return a single `ProbeOutcome`."""

    def __init__(
        self,
        target: ProbeTarget,
        tls_dialer: TlsDialer = tls_dial,
        transport_factory: Optional[TransportFactory] = None,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive: float = DEFAULT_KEEPALIVE,
        follow_redirects: bool = False,
        io_executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.target = target
        self.tls_dialer = tls_dialer
        self.transport_factory = transport_factory
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self.follow_redirects = follow_redirects
        self.io_executor = io_executor

    def _transport(self) -> httpx.AsyncBaseTransport:
        if self.transport_factory is not None:
            return self.transport_factory(self.target.name, self.target.ip)
        return pinned_transport(self.target.name, self.target.ip, keepalive=self.keepalive)

    async def run(self) -> ProbeOutcome:
        name, ip = self.target.name, self.target.ip
        loop = asyncio.get_running_loop()
        try:
            cert_cn = await loop.run_in_executor(
                self.io_executor,
                self.tls_dialer,
                name,
                ip,
                HTTPS_PORT,
                self.connect_timeout,
                self.keepalive,
            )
        except Exception as exc:
            return ConnectFailed(name, ip, error=_error_text(exc))

        async with httpx.AsyncClient(
            transport=self._transport(),
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            follow_redirects=self.follow_redirects,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            try:
                request = client.build_request("GET", f"https://{name}/", headers={"Host": name})
            except Exception as exc:
                return RequestFailed(name, ip, error=_error_text(exc))

            try:
                response = await client.send(request, stream=True)
            except Exception as exc:
                return RequestFailed(name, ip, error=_error_text(exc))

            try:
                body = await response.aread()
            except Exception as exc:
                return ReadFailed(name, ip, error=_error_text(exc))
            finally:
                await response.aclose()

        status = f"{response.status_code} {response.reason_phrase}".strip()
        return Success(
            name,
            ip,
            status=status,
            headers=group_headers(response.headers.raw),
            body=body,
            title=extract_title(body),
            cert_cn=cert_cn,
        )


class ProbeEngine:
    """Resolve records, probe every (SAN, IP) pair and keep hidden vhosts.

    A finding is kept only when the probe succeeds and the probed name does
    not resolve through DNS. Any successful lookup suppresses it, whatever
    addresses DNS returns.
    """

    def __init__(
        self,
        store: Optional[ResultStore] = None,
        resolver: Optional[Resolver] = None,
        ip_resolver: Optional[Resolver] = None,
        tls_dialer: TlsDialer = tls_dial,
        transport_factory: Optional[TransportFactory] = None,
        dns_server: Optional[str] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        keepalive: float = DEFAULT_KEEPALIVE,
        threads: Optional[int] = None,
        follow_redirects: bool = False,
        capture_body: bool = False,
        verbose: bool = False,
        on_finding: Optional[Callable[[Finding], None]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.store = store if store is not None else ResultStore()
        self.resolver = resolver or DnsResolver(dns_server or default_dns_server())
        self.ip_resolver = ip_resolver or self.resolver
        self.tls_dialer = tls_dialer
        self.transport_factory = transport_factory
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.connect_timeout = connect_timeout or DEFAULT_CONNECT_TIMEOUT
        self.keepalive = keepalive
        self.threads = threads
        self.follow_redirects = follow_redirects
        self.capture_body = capture_body
        self.verbose = verbose
        self.on_finding = on_finding
        self.progress_callback = progress_callback
        self.io_executor: Optional[ThreadPoolExecutor] = None

    async def _resolve(self, name: str, resolver: Optional[Resolver] = None) -> Optional[List[str]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.io_executor, resolver or self.resolver, name)

    async def resolve_records(self, records: List[CertificateRecord]) -> None:
        async def resolve_one(record: CertificateRecord) -> None:
            name = lookup_name(record.hostname)
            if _is_ip_literal(name):
                record.resolved_ips = [name.strip("[]")]
                return
            ips = await self._resolve(name, self.ip_resolver)
            record.resolved_ips = list(ips or [])
            if not ips and self.verbose:
                logger.info("Could not resolve IP for %s", record.hostname)

        await asyncio.gather(*(resolve_one(record) for record in records))

    @staticmethod
    def targets(records: Iterable[CertificateRecord]) -> List[ProbeTarget]:
        out: List[ProbeTarget] = []
        for record in records:
            out.extend(probe_targets(record))
        return out

    async def probe(self, target: ProbeTarget) -> ProbeOutcome:
        outcome = await VhostProbe(
            target,
            tls_dialer=self.tls_dialer,
            transport_factory=self.transport_factory,
            timeout=self.timeout,
            connect_timeout=self.connect_timeout,
            keepalive=self.keepalive,
            follow_redirects=self.follow_redirects,
            io_executor=self.io_executor,
        ).run()
        if self.verbose and not outcome.ok:
            self._log_failure(outcome)
        return outcome

    @staticmethod
    def _log_failure(outcome: ProbeOutcome) -> None:
        error = getattr(outcome, "error", "")
        if isinstance(outcome, ConnectFailed):
            logger.info("Could not connect to %s (%s): %s", outcome.name, outcome.ip, error)
        elif isinstance(outcome, RequestFailed):
            logger.info("Could not send request to %s (%s): %s", outcome.name, outcome.ip, error)
        elif isinstance(outcome, ReadFailed):
            logger.info("Could not read response from %s (%s): %s", outcome.name, outcome.ip, error)

    async def classify(self, outcome: Success) -> Optional[Finding]:
        if await self._resolve(outcome.name):
            if self.verbose:
                logger.info("%s resolves via DNS; not a hidden vhost on %s", outcome.name, outcome.ip)
            return None
        return Finding.from_success(outcome, capture_body=self.capture_body)

    async def check(self, target: ProbeTarget) -> Optional[Finding]:
        outcome = await self.probe(target)
        if not isinstance(outcome, Success):
            return None
        finding = await self.classify(outcome)
        if finding is None:
            return None
        self.store.add(finding)
        if self.on_finding:
            self.on_finding(finding)
        return finding

    async def run(self, records: List[CertificateRecord]) -> ResultStore:
        """Resolve every record, then probe the full target set.

        Without a `threads` limit one worker is started per target, so every
        probe runs concurrently. The blocking TLS dials and DNS lookups get an
        executor thread per worker. A check that raises counts as a
        non-finding. Returns once all probes have completed.
        """
        worker_hint = self.threads or max(1, sum(len(record.san_names) for record in records))
        io_workers = max(64, worker_hint)

        with ThreadPoolExecutor(max_workers=io_workers) as io_executor:
            self.io_executor = io_executor
            try:
                await self.resolve_records(records)
                targets = self.targets(records)
                if not targets:
                    return self.store

                queue: "asyncio.Queue[Optional[ProbeTarget]]" = asyncio.Queue()
                for target in targets:
                    queue.put_nowait(target)

                worker_count = len(targets) if not self.threads else max(1, min(self.threads, len(targets)))
                for _ in range(worker_count):
                    queue.put_nowait(None)

                total = len(targets)
                done = 0
                done_lock = asyncio.Lock()

                async def worker() -> None:
                    nonlocal done
                    while True:
                        target = await queue.get()
                        try:
                            if target is None:
                                return
                            try:
                                await self.check(target)
                            except Exception as exc:
                                if self.verbose:
                                    logger.info("Check failed for %s (%s): %s", target.name, target.ip, _error_text(exc))
                        finally:
                            queue.task_done()
                            if target is not None:
                                async with done_lock:
                                    done += 1
                                    if self.progress_callback:
                                        try:
                                            self.progress_callback(done, total)
                                        except Exception as exc:
                                            if self.verbose:
                                                logger.info("Progress callback failed: %s", _error_text(exc))

                workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
                await queue.join()
                await asyncio.gather(*workers)
            finally:
                self.io_executor = None
        return self.store


def count_targets(records: Iterable[CertificateRecord]) -> int:
    return len(ProbeEngine.targets(records))


async def _run_async(
    records: List[CertificateRecord],
    dns: Optional[str] = None,
    timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
    threads: Optional[int] = None,
    capture_body: bool = False,
    follow_redirects: bool = False,
    key_by_host: bool = False,
    verbose: bool = False,
    on_finding: Optional[Callable[[Finding], None]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    engine_factory: Optional[Callable[..., ProbeEngine]] = None,
) -> List[Finding]:
    """Main orchestrator used by both CLI and Python API.

    Flow:
    1. resolve each record hostname to the IPs serving it
    2. probe the SAN x IP cross product of every record
    3. drain the findings store once every probe has completed
    """
    if not records:
        return []

    factory = engine_factory or ProbeEngine
    engine = factory(
        store=ResultStore(key_by_host=key_by_host),
        dns_server=dns,
        timeout=timeout,
        connect_timeout=connect_timeout,
        threads=threads,
        follow_redirects=follow_redirects,
        capture_body=capture_body,
        verbose=verbose,
        on_finding=on_finding,
        progress_callback=progress_callback,
    )
    store = await engine.run(records)
    return store.drain()


def _run_coro_sync(coro: Any) -> Any:
    """Run async code from sync callers (CLI and public API).

    If already inside an event loop, execute in a helper thread to avoid
    `RuntimeError: asyncio.run() cannot be called from a running event loop`.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["result"] = asyncio.run(coro)
        except Exception as exc:  # pragma: no cover - fallback path
            outcome["error"] = exc

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


def VHOSTSNIFF(
    source: Union[str, Path, Iterable[str]],
    dns: Optional[str] = None,
    timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
    threads: Optional[int] = None,
    capture_body: bool = False,
    follow_redirects: bool = False,
    key_by_host: bool = False,
    verbose: bool = False,
) -> List[dict]:
    """Public synchronous Python API entrypoint.

    `source` is a report file path or an iterable of report lines.

    Example:
    `VHOSTSNIFF("tlsx_output.txt", capture_body=True)`
    """
    if isinstance(source, (str, Path)):
        records = load_records(source)
    else:
        records = aggregate_records(source)

    findings = _run_coro_sync(
        _run_async(
            records,
            dns=dns,
            timeout=timeout,
            connect_timeout=connect_timeout,
            threads=threads,
            capture_body=capture_body,
            follow_redirects=follow_redirects,
            key_by_host=key_by_host,
            verbose=verbose,
        )
    )
    return [finding.to_dict() for finding in findings]
