"""Operational diagnostics for a loaded settings file.

These checks are advisory: a configuration that loads can still fail
them, e.g. a port range the firewall layer would refuse or a secret left
at its sample value.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from portknob.config.schema import AppConfig, split_host_port


# iptables refuses chain names longer than this.
MAX_CHAIN_NAME_LENGTH = 28
SAMPLE_SECRET_VALUES = {"change-me"}


@dataclass(slots=True)
class DoctorCheck:
    name: str
    ok: bool
    detail: str


def run_diagnostics(config: AppConfig, *, check_filesystem: bool = True) -> dict[str, Any]:
    checks = [
        _listen_check(config),
        _http_path_check(config),
        _prefix_check(config),
        _chain_name_check(config),
        _ports_check(config),
        _redirects_check(config),
        _secrets_check(config),
    ]
    if check_filesystem:
        checks.append(_cache_database_check(config))
    return {
        "ok": all(check.ok for check in checks),
        "checks": [asdict(check) for check in checks],
    }


def _listen_check(config: AppConfig) -> DoctorCheck:
    listen = config.daemon.listen or ""
    try:
        _host, port = split_host_port(listen)
    except ValueError as exc:
        return DoctorCheck(name="listen_address", ok=False, detail=str(exc))
    if port is None:
        return DoctorCheck(name="listen_address", ok=False, detail=f"listen address '{listen}' has no port")
    return DoctorCheck(name="listen_address", ok=True, detail=f"listening on {listen}")


def _http_path_check(config: AppConfig) -> DoctorCheck:
    path = config.daemon.http_path or ""
    return DoctorCheck(
        name="http_path",
        ok=path.startswith("/"),
        detail=f"http path={path}" if path.startswith("/") else f"http path '{path}' must start with '/'",
    )


def _prefix_check(config: AppConfig) -> DoctorCheck:
    violations: list[str] = []
    ipv4_prefix = config.daemon.ipv4_prefix
    ipv6_prefix = config.daemon.ipv6_prefix
    if ipv4_prefix is None or not 1 <= ipv4_prefix <= 32:
        violations.append(f"ipv4-prefix {ipv4_prefix} must be between 1 and 32")
    if ipv6_prefix is None or not 1 <= ipv6_prefix <= 128:
        violations.append(f"ipv6-prefix {ipv6_prefix} must be between 1 and 128")
    return DoctorCheck(
        name="whitelist_prefixes",
        ok=not violations,
        detail="; ".join(violations) if violations else f"whitelisting /{ipv4_prefix} and /{ipv6_prefix}",
    )


def _chain_name_check(config: AppConfig) -> DoctorCheck:
    name = config.daemon.firewall_chain_name or ""
    ok = 0 < len(name) <= MAX_CHAIN_NAME_LENGTH and not any(char.isspace() for char in name)
    return DoctorCheck(
        name="firewall_chain_name",
        ok=ok,
        detail=(
            f"firewall chain={name}"
            if ok
            else f"chain name '{name}' must be 1-{MAX_CHAIN_NAME_LENGTH} characters without whitespace"
        ),
    )


def _rule_label(index: int, comment: str) -> str:
    return f"firewall rule #{index}" + (f" ({comment})" if comment else "")


def _ports_check(config: AppConfig) -> DoctorCheck:
    violations: list[str] = []
    for index, rule in enumerate(config.firewall, start=1):
        try:
            rule.port_range()
        except ValueError as exc:
            violations.append(f"{_rule_label(index, rule.comment)}: {exc}")
    return DoctorCheck(
        name="firewall_ports",
        ok=not violations,
        detail="; ".join(violations) if violations else f"{len(config.firewall)} port specifications valid",
    )


def _redirects_check(config: AppConfig) -> DoctorCheck:
    violations: list[str] = []
    redirects = 0
    for index, rule in enumerate(config.firewall, start=1):
        try:
            target = rule.redirect_target()
        except ValueError as exc:
            violations.append(f"{_rule_label(index, rule.comment)}: {exc}")
            continue
        if target is not None:
            redirects += 1
    return DoctorCheck(
        name="firewall_redirects",
        ok=not violations,
        detail="; ".join(violations) if violations else f"{redirects} redirect targets valid",
    )


def _secrets_check(config: AppConfig) -> DoctorCheck:
    if not config.secrets:
        return DoctorCheck(name="secrets", ok=False, detail="no secrets configured; nobody can authenticate")
    empty = sorted(name for name, value in config.secrets.items() if not value)
    if empty:
        return DoctorCheck(name="secrets", ok=False, detail=f"empty secrets: {', '.join(empty)}")
    samples = sorted(name for name, value in config.secrets.items() if value in SAMPLE_SECRET_VALUES)
    if samples:
        return DoctorCheck(name="secrets", ok=False, detail=f"secrets left at sample value: {', '.join(samples)}")
    return DoctorCheck(name="secrets", ok=True, detail=f"{len(config.secrets)} secrets configured")


def _cache_database_check(config: AppConfig) -> DoctorCheck:
    database = Path(config.daemon.cache_database or "")
    parent = database.parent
    if not parent.is_dir():
        return DoctorCheck(
            name="cache_database",
            ok=False,
            detail=f"cache database directory '{parent}' does not exist",
        )
    return DoctorCheck(name="cache_database", ok=True, detail=f"cache database={database}")
