from __future__ import annotations

import ipaddress
from typing import Callable, Dict, Optional

from ..core import DEFAULT_CONNECT_TIMEOUT, DEFAULT_TIMEOUT, default_dns_server
from ..storage import get_settings, set_setting


def _normalize_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text if text else None


def _parse_positive_float(value: str) -> str:
    number = float(value)
    if number <= 0:
        raise ValueError("must be greater than zero")
    return str(number)


def _parse_threads(value: str) -> str:
    text = value.strip()
    if text == "":
        return ""
    number = int(text)
    if number < 1:
        raise ValueError("must be at least 1 (empty value means unbounded)")
    return str(number)


def validate_dns_server(value: Optional[str]) -> Optional[str]:
    """Return the nameserver address, or None for the system resolver.

    Raises ValueError when the value is not an IPv4/IPv6 address.
    """
    text = _normalize_optional(value)
    if text is None:
        return None
    try:
        ipaddress.ip_address(text)
    except ValueError:
        raise ValueError(f"Invalid DNS server: {text} (expected an IP address)") from None
    return text


def _parse_dns(value: str) -> str:
    return validate_dns_server(value) or ""


SETTING_PARSERS: Dict[str, Callable[[str], str]] = {
    "runtime.dns": _parse_dns,
    "runtime.timeout": _parse_positive_float,
    "runtime.connect_timeout": _parse_positive_float,
    "runtime.threads": _parse_threads,
}


def load_saved_runtime_settings() -> dict:
    """Saved setup layered over environment and built-in defaults."""
    saved = get_settings(prefix="runtime.")

    def _parse_float(value: Optional[str], default: float) -> float:
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            return default

    def _parse_int(value: Optional[str]) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except ValueError:
            return None

    return {
        "dns": _normalize_optional(saved.get("runtime.dns")) or default_dns_server(),
        "timeout": _parse_float(saved.get("runtime.timeout"), DEFAULT_TIMEOUT),
        "connect_timeout": _parse_float(saved.get("runtime.connect_timeout"), DEFAULT_CONNECT_TIMEOUT),
        "threads": _parse_int(saved.get("runtime.threads")),
    }


def save_runtime_setting(key: str, value: str) -> str:
    """Validate and persist one runtime default; returns the stored value.

    Raises ValueError for unknown keys or invalid values.
    """
    parser = SETTING_PARSERS.get(key)
    if parser is None:
        raise ValueError(f"Unknown setting: {key} (valid: {', '.join(sorted(SETTING_PARSERS))})")
    try:
        stored = parser(value)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {key}: {value} ({exc})") from exc
    set_setting(key, stored or None)
    return stored
