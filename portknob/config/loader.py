"""Settings file loading and initialization."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
import tomllib
from typing import Any

import yaml

from portknob.config.errors import InvalidOptionError, LoadError
from portknob.config.schema import AppConfig, check_document, parse_config
from portknob.core.logging import get_logger, log_event


DEFAULT_CONFIG_PATH = Path(__file__).with_name("defaults.toml")
YAML_SUFFIXES = {".yml", ".yaml"}
_ENV_TOKEN_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

logger = get_logger("portknob.config")


def read_document(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise LoadError(f"cannot read settings file: {exc}", path=path) from exc

    if path.suffix.lower() in YAML_SUFFIXES:
        document_format = "yaml"
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise LoadError(f"malformed YAML document: {exc}", path=path) from exc
        if raw is None:
            raw = {}
    else:
        document_format = "toml"
        try:
            raw = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise LoadError(f"malformed TOML document: {exc}", path=path) from exc

    if not isinstance(raw, dict):
        raise LoadError("settings document must be a table", path=path)
    logger.debug("read settings document", extra={"config_path": str(path), "payload": {"format": document_format}})
    return raw


def load_config(path: Path) -> AppConfig:
    raw = read_document(path)
    try:
        check_document(raw)
        raw = _interpolate_env(raw)
        config = parse_config(raw)
    except LoadError as exc:
        if exc.path is not None:
            raise
        raise LoadError(str(exc), path=path) from exc
    log_event(
        logger,
        "settings loaded",
        action="config_load",
        config_path=str(path),
        payload={"firewall_rules": len(config.firewall), "secrets": len(config.secrets)},
    )
    return config


def initialize_config(path: Path, force: bool = False) -> Path:
    if path.exists() and not force:
        raise FileExistsError(f"config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(DEFAULT_CONFIG_PATH, path)
    return path


def _interpolate_env(value: Any, option: str = "") -> Any:
    if isinstance(value, dict):
        return {
            key: _interpolate_env(item, f"{option}.{key}" if option else str(key)) for key, item in value.items()
        }
    if isinstance(value, list):
        return [_interpolate_env(item, option) for item in value]
    if isinstance(value, str):
        return _interpolate_string(value, option)
    return value


def _interpolate_string(value: str, option: str) -> str:
    # Only a value that is exactly one token is substituted; "$${" escapes it.
    if value.startswith("$${"):
        return value[1:]
    match = _ENV_TOKEN_RE.fullmatch(value)
    if match is None:
        return value
    name = match.group(1)
    default = match.group(2)
    resolved = os.environ.get(name)
    if resolved is not None:
        return resolved
    if default is not None:
        return default
    raise InvalidOptionError(option, value, f"missing required environment variable '{name}'")
