"""CLI entry point for portknob settings management."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Sequence

from portknob.config.errors import ConfigError
from portknob.config.loader import initialize_config, load_config
from portknob.config.schema import AppConfig
from portknob.core.doctor import run_diagnostics
from portknob.core.logging import VALID_LOG_FORMATS, VALID_LOG_LEVELS, apply_verbosity, configure_logging


DEFAULT_CONFIG = Path("/etc/portknob.conf")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portknob")
    parser.add_argument("--log-level", type=str.upper, choices=sorted(VALID_LOG_LEVELS), default="WARNING")
    parser.add_argument("--log-format", choices=sorted(VALID_LOG_FORMATS), default="text")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Write a sample settings file")
    init_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    init_parser.add_argument("--force", action="store_true")

    check_parser = subparsers.add_parser("check", help="Load and validate a settings file")
    check_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)

    show_parser = subparsers.add_parser("show", help="Print the normalized settings as JSON")
    show_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    show_parser.add_argument(
        "--reveal-secrets",
        action="store_true",
        help="Print secret values instead of a placeholder",
    )

    doctor_parser = subparsers.add_parser("doctor", help="Run advisory checks on a settings file")
    doctor_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    doctor_parser.add_argument(
        "--skip-filesystem",
        action="store_true",
        help="Do not inspect the cache database location",
    )
    return parser


def cmd_init(config_path: Path, force: bool) -> int:
    try:
        initialize_config(config_path, force=force)
    except FileExistsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f"wrote config: {config_path}")
    return 0


def _load(config_path: Path) -> AppConfig:
    config = load_config(config_path)
    apply_verbosity(config)
    return config


def cmd_check(config_path: Path) -> int:
    config = _load(config_path)
    print(f"config ok: {len(config.firewall)} firewall rules, {len(config.secrets)} secrets")
    return 0


def cmd_show(config_path: Path, *, reveal_secrets: bool) -> int:
    config = _load(config_path)
    print(json.dumps(config.snapshot(redact_secrets=not reveal_secrets), indent=2))
    return 0


def cmd_doctor(config_path: Path, *, check_filesystem: bool) -> int:
    config = _load(config_path)
    report = run_diagnostics(config, check_filesystem=check_filesystem)
    print(json.dumps(report, indent=2))
    return 0 if bool(report.get("ok")) else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_format, force=True)

    if args.command == "init":
        return cmd_init(args.config, args.force)
    try:
        if args.command == "check":
            return cmd_check(args.config)
        if args.command == "show":
            return cmd_show(args.config, reveal_secrets=args.reveal_secrets)
        if args.command == "doctor":
            return cmd_doctor(args.config, check_filesystem=not args.skip_filesystem)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
