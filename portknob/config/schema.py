"""Dataclasses and validation for the portknob settings file.

A settings document goes through three stages:

* ``decode_config`` checks the document shape, rejects unknown keys and
  scalar type mismatches, and returns an ``AppConfig`` whose missing daemon
  fields are ``None``.
* ``apply_defaults`` fills every missing daemon field.
* ``validate_config`` checks the deny method and each firewall rule in
  declaration order, parsing destination addresses. The first violation
  is raised.

``parse_config`` runs all three. The resulting objects are frozen and are
replaced wholesale on reload, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import ipaddress
from types import MappingProxyType
from typing import Any, Mapping

from portknob.config.errors import InvalidOptionError, LoadError, MissingOptionError, UnknownOptionError


IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

DEFAULT_LISTEN = "[::1]:706"
DEFAULT_VERBOSE = 0
DEFAULT_HTTP_PATH = "/"
DEFAULT_CLIENT_IP_HEADER = "X-Real-IP"
DEFAULT_IPV4_PREFIX = 24
DEFAULT_IPV6_PREFIX = 48
DEFAULT_CACHE_DATABASE = "/var/cache/portknob.db"
DEFAULT_COOKIE_LIFESPAN = 604800
DEFAULT_FIREWALL_LIFESPAN = 604800
DEFAULT_FIREWALL_CHAIN_NAME = "portknob"
DEFAULT_FIREWALL_DENY_METHOD = "reject"

VALID_DENY_METHODS = {"drop", "reject"}
VALID_PROTOCOLS = {"tcp", "udp", ""}
ANY_DESTINATION = "any"

TOP_LEVEL_OPTIONS = frozenset({"daemon", "firewall", "secrets"})
DAEMON_STRING_OPTIONS = {
    "listen": "listen",
    "http-path": "http_path",
    "client-ip": "client_ip",
    "cache-database": "cache_database",
    "firewall-chain-name": "firewall_chain_name",
    "firewall-deny-method": "firewall_deny_method",
}
DAEMON_INTEGER_OPTIONS = {
    "verbose": "verbose",
    "ipv4-prefix": "ipv4_prefix",
    "ipv6-prefix": "ipv6_prefix",
    "cookie-lifespan": "cookie_lifespan",
    "firewall-lifespan": "firewall_lifespan",
}
DAEMON_OPTIONS = frozenset({*DAEMON_STRING_OPTIONS, *DAEMON_INTEGER_OPTIONS})
FIREWALL_OPTIONS = frozenset({"comment", "proto", "dest", "dport", "redir"})


def split_host_port(value: str) -> tuple[str, int | None]:
    """Split ``addr``, ``:port``, ``addr:port`` or ``[v6addr]:port``.

    A bare IPv6 literal without brackets is treated as an address with no
    port. Raises ``ValueError`` when the port is not within 1-65535.
    """
    if value.startswith("["):
        host, bracket, rest = value[1:].partition("]")
        if not bracket or (rest and not rest.startswith(":")):
            raise ValueError(f"invalid address '{value}'")
        port_text = rest[1:]
        if rest and not port_text:
            raise ValueError(f"invalid address '{value}'")
    elif value.count(":") == 1:
        host, _, port_text = value.partition(":")
        if not port_text:
            raise ValueError(f"invalid address '{value}'")
    else:
        host, port_text = value, ""
    if not port_text:
        return host, None
    if not port_text.isascii() or not port_text.isdigit():
        raise ValueError(f"invalid port '{port_text}'")
    port = int(port_text)
    if port < 1 or port > 65535:
        raise ValueError(f"port {port} must be between 1 and 65535")
    return host, port


@dataclass(frozen=True, slots=True)
class DaemonConfig:
    listen: str | None = None
    verbose: int | None = None
    http_path: str | None = None
    client_ip: str | None = None
    ipv4_prefix: int | None = None
    ipv6_prefix: int | None = None
    cache_database: str | None = None
    cookie_lifespan: int | None = None
    firewall_lifespan: int | None = None
    firewall_chain_name: str | None = None
    firewall_deny_method: str | None = None

    def whitelist_prefix(self, address: str | IPAddress) -> int:
        parsed = ipaddress.ip_address(address)
        prefix = self.ipv4_prefix if parsed.version == 4 else self.ipv6_prefix
        if prefix is None:
            raise ValueError("whitelist prefixes are unset; apply defaults first")
        return prefix

    def whitelist_network(self, address: str | IPAddress) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        parsed = ipaddress.ip_address(address)
        return ipaddress.ip_network(f"{parsed}/{self.whitelist_prefix(parsed)}", strict=False)


@dataclass(frozen=True, slots=True)
class FirewallRule:
    dport: str = ""
    comment: str = ""
    proto: str = ""
    dest: str = ""
    dest_ip: IPAddress | None = None
    dest_suffix: str = ""
    redir: str = ""

    @property
    def matches_any_destination(self) -> bool:
        return self.dest_ip is None

    @property
    def dest_network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
        if self.dest_ip is None:
            return None
        return ipaddress.ip_network(f"{self.dest_ip}{self.dest_suffix}", strict=False)

    def port_range(self) -> tuple[int, int]:
        first, separator, last = self.dport.partition(":")
        try:
            start = int(first)
            end = int(last) if separator else start
        except ValueError as exc:
            raise ValueError(f"invalid port specification '{self.dport}'") from exc
        if start < 1 or end > 65535 or start > end:
            raise ValueError(f"port specification '{self.dport}' must be an ascending range within 1-65535")
        return start, end

    def redirect_target(self) -> tuple[str, int | None] | None:
        if not self.redir:
            return None
        host, port = split_host_port(self.redir)
        if host:
            ipaddress.ip_address(host)
        elif port is None:
            raise ValueError(f"invalid redirect target '{self.redir}'")
        return host, port


@dataclass(frozen=True, slots=True)
class AppConfig:
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    firewall: tuple[FirewallRule, ...] = ()
    secrets: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def snapshot(self, *, redact_secrets: bool = True) -> dict[str, Any]:
        return {
            "daemon": {
                "listen": self.daemon.listen,
                "verbose": self.daemon.verbose,
                "http-path": self.daemon.http_path,
                "client-ip": self.daemon.client_ip,
                "ipv4-prefix": self.daemon.ipv4_prefix,
                "ipv6-prefix": self.daemon.ipv6_prefix,
                "cache-database": self.daemon.cache_database,
                "cookie-lifespan": self.daemon.cookie_lifespan,
                "firewall-lifespan": self.daemon.firewall_lifespan,
                "firewall-chain-name": self.daemon.firewall_chain_name,
                "firewall-deny-method": self.daemon.firewall_deny_method,
            },
            "firewall": [
                {
                    "comment": rule.comment,
                    "proto": rule.proto,
                    "dest": f"{rule.dest_ip}{rule.dest_suffix}" if rule.dest_ip is not None else ANY_DESTINATION,
                    "dport": rule.dport,
                    "redir": rule.redir,
                }
                for rule in self.firewall
            ],
            "secrets": {
                name: ("********" if redact_secrets else value) for name, value in sorted(self.secrets.items())
            },
        }


def _table(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    raw = data.get(key)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise LoadError(f"'{key}' must be a table")
    return raw


def _table_list(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    raw = data.get(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise LoadError(f"'{key}' must be a list of tables")
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, Mapping):
            raise LoadError(f"'{key}' entry #{index} must be a table")
    return raw


def _unknown_option(
    data: Mapping[str, Any],
    daemon_raw: Mapping[str, Any],
    firewall_raw: list[Mapping[str, Any]],
) -> str | None:
    for key in data:
        if key not in TOP_LEVEL_OPTIONS:
            return str(key)
    for key in daemon_raw:
        if key not in DAEMON_OPTIONS:
            return f"daemon.{key}"
    for rule_raw in firewall_raw:
        for key in rule_raw:
            if key not in FIREWALL_OPTIONS:
                return f"firewall.{key}"
    return None


def _string_option(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidOptionError(key, value, "expected a string")
    return value


def _integer_option(raw: Mapping[str, Any], key: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidOptionError(key, value, "expected an integer")
    if value < 0:
        raise InvalidOptionError(key, value, "must not be negative")
    return value


def _decode_daemon(raw: Mapping[str, Any]) -> DaemonConfig:
    values: dict[str, Any] = {}
    for key, attribute in DAEMON_STRING_OPTIONS.items():
        values[attribute] = _string_option(raw, key)
    for key, attribute in DAEMON_INTEGER_OPTIONS.items():
        values[attribute] = _integer_option(raw, key)
    return DaemonConfig(**values)


def _decode_rule(raw: Mapping[str, Any]) -> FirewallRule:
    return FirewallRule(
        comment=_string_option(raw, "comment") or "",
        proto=_string_option(raw, "proto") or "",
        dest=_string_option(raw, "dest") or "",
        dport=_string_option(raw, "dport") or "",
        redir=_string_option(raw, "redir") or "",
    )


def _decode_secrets(raw: Mapping[str, Any]) -> Mapping[str, str]:
    secrets: dict[str, str] = {}
    for name, value in raw.items():
        if not isinstance(name, str):
            raise InvalidOptionError("secrets", name, "secret names must be strings")
        # The value itself is never echoed back.
        if not isinstance(value, str):
            raise InvalidOptionError(f"secrets.{name}", type(value).__name__, "expected a string")
        secrets[name] = value
    return MappingProxyType(secrets)


def check_document(data: Mapping[str, Any]) -> None:
    """Reject a malformed document shape or any key outside the schema."""
    if not isinstance(data, Mapping):
        raise LoadError("settings document must be a table")
    unknown = _unknown_option(data, _table(data, "daemon"), _table_list(data, "firewall"))
    if unknown is not None:
        raise UnknownOptionError(unknown)


def decode_config(data: Mapping[str, Any]) -> AppConfig:
    check_document(data)
    daemon_raw = _table(data, "daemon")
    firewall_raw = _table_list(data, "firewall")
    secrets_raw = _table(data, "secrets")

    return AppConfig(
        daemon=_decode_daemon(daemon_raw),
        firewall=tuple(_decode_rule(item) for item in firewall_raw),
        secrets=_decode_secrets(secrets_raw),
    )


def _or_default(value: int | None, default: int) -> int:
    return default if value is None else value


def apply_defaults(config: AppConfig) -> AppConfig:
    daemon = config.daemon
    defaulted = DaemonConfig(
        listen=daemon.listen or DEFAULT_LISTEN,
        verbose=_or_default(daemon.verbose, DEFAULT_VERBOSE),
        http_path=daemon.http_path or DEFAULT_HTTP_PATH,
        client_ip=daemon.client_ip or DEFAULT_CLIENT_IP_HEADER,
        ipv4_prefix=_or_default(daemon.ipv4_prefix, DEFAULT_IPV4_PREFIX),
        ipv6_prefix=_or_default(daemon.ipv6_prefix, DEFAULT_IPV6_PREFIX),
        cache_database=daemon.cache_database or DEFAULT_CACHE_DATABASE,
        cookie_lifespan=_or_default(daemon.cookie_lifespan, DEFAULT_COOKIE_LIFESPAN),
        firewall_lifespan=_or_default(daemon.firewall_lifespan, DEFAULT_FIREWALL_LIFESPAN),
        firewall_chain_name=daemon.firewall_chain_name or DEFAULT_FIREWALL_CHAIN_NAME,
        firewall_deny_method=daemon.firewall_deny_method or DEFAULT_FIREWALL_DENY_METHOD,
    )
    return replace(config, daemon=defaulted)


def _parse_destination(raw: str) -> tuple[IPAddress, str]:
    literal, slash, prefix = raw.partition("/")
    try:
        address = ipaddress.ip_address(literal)
    except ValueError as exc:
        raise InvalidOptionError("dest", raw) from exc
    # Firewall destinations cannot carry an IPv6 zone.
    if getattr(address, "scope_id", None):
        raise InvalidOptionError("dest", raw)
    if not slash:
        return address, ""
    if not prefix.isascii() or not prefix.isdigit() or int(prefix) > address.max_prefixlen:
        raise InvalidOptionError("dest", raw)
    return address, f"/{prefix}"


def _validate_rule(rule: FirewallRule) -> FirewallRule:
    if rule.proto not in VALID_PROTOCOLS:
        raise InvalidOptionError("proto", rule.proto)
    if rule.dest in ("", ANY_DESTINATION):
        rule = replace(rule, dest="", dest_ip=None, dest_suffix="")
    else:
        address, suffix = _parse_destination(rule.dest)
        rule = replace(rule, dest_ip=address, dest_suffix=suffix)
    if not rule.dport:
        raise MissingOptionError("dport")
    return rule


def validate_config(config: AppConfig) -> AppConfig:
    deny_method = config.daemon.firewall_deny_method
    if deny_method not in VALID_DENY_METHODS:
        raise InvalidOptionError("firewall-deny-method", deny_method)
    rules = tuple(_validate_rule(rule) for rule in config.firewall)
    return replace(config, firewall=rules)


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    return validate_config(apply_defaults(decode_config(data)))
