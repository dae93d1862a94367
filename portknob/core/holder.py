"""Ownership of the active configuration.

Readers take ``holder.current`` and keep using that instance; ``reload``
builds a complete replacement before swapping the reference, so a reader
never observes a partially loaded configuration.
"""

from __future__ import annotations

from pathlib import Path
import threading
from typing import Callable

from portknob.config.errors import ConfigError
from portknob.config.loader import load_config
from portknob.config.schema import AppConfig
from portknob.core.logging import get_logger, log_event


class ConfigHolder:
    def __init__(self, path: Path, *, loader: Callable[[Path], AppConfig] = load_config) -> None:
        self.path = path
        self.logger = get_logger("portknob.holder")
        self._loader = loader
        self._reload_lock = threading.Lock()
        self._current = loader(path)
        self._generation = 1

    @property
    def current(self) -> AppConfig:
        return self._current

    @property
    def generation(self) -> int:
        return self._generation

    def reload(self) -> AppConfig:
        with self._reload_lock:
            try:
                config = self._loader(self.path)
            except ConfigError as exc:
                log_event(
                    self.logger,
                    f"reload rejected, keeping generation {self._generation}: {exc}",
                    action="config_reload",
                    outcome="failure",
                    config_path=str(self.path),
                    level="ERROR",
                )
                raise
            self._current = config
            self._generation += 1
            generation = self._generation
        log_event(
            self.logger,
            "settings reloaded",
            action="config_reload",
            config_path=str(self.path),
            payload={"generation": generation},
        )
        return config
