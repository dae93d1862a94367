"""Errors raised while loading the settings file."""

from __future__ import annotations

from pathlib import Path


class ConfigError(ValueError):
    pass


class LoadError(ConfigError):
    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path is not None else message)


class UnknownOptionError(ConfigError):
    def __init__(self, option: str) -> None:
        self.option = option
        super().__init__(f'unknown option "{option}"')


class InvalidOptionError(ConfigError):
    def __init__(self, option: str, value: object, detail: str = "") -> None:
        self.option = option
        self.value = value
        message = f'option "{option}" does not support "{value}"'
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MissingOptionError(ConfigError):
    def __init__(self, option: str) -> None:
        self.option = option
        super().__init__(f'option "{option}" not specified')
