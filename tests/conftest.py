from __future__ import annotations

import logging
import os
from pathlib import Path
import textwrap
from typing import Callable

import pytest


# The packaged sample settings file reads its secret from the environment;
# keep default-config test runs deterministic.
os.environ.pop("PORTKNOB_ADMIN_SECRET", None)


@pytest.fixture(autouse=True)
def _reset_portknob_logging():
    yield
    root = logging.getLogger("portknob")
    for handler in list(root.handlers):
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.NOTSET)
    root.propagate = True
    if hasattr(root, "_portknob_configured"):
        delattr(root, "_portknob_configured")


@pytest.fixture
def write_settings(tmp_path: Path) -> Callable[..., Path]:
    def _write(body: str, name: str = "portknob.conf") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
        return path

    return _write
