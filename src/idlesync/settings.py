"""Runtime settings for the idlesync client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from idlesync import __version__


@dataclass(frozen=True)
class RuntimeSettings:
    home_dir: Path
    state_dir: Path
    log_dir: Path
    client_version: str = __version__

    @property
    def config_file(self) -> Path:
        return self.home_dir / "sync.yaml"


def _default_home_dir() -> Path:
    override = os.getenv("IDLESYNC_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".idlesync"


def load_settings() -> RuntimeSettings:
    base = _default_home_dir()
    state_dir = base / "state"
    log_dir = base / "logs"
    return RuntimeSettings(
        home_dir=base,
        state_dir=state_dir,
        log_dir=log_dir,
    )


SETTINGS = load_settings()
