"""Well-known locations for registry, logs and installed artifacts."""

from __future__ import annotations

import os
from pathlib import Path

APP_DIR_NAME = ".depkeeper"
REGISTRY_FILENAME = "registry.json"


def app_home_dir() -> Path:
    override = os.environ.get("DEPKEEPER_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / APP_DIR_NAME


def default_deps_dir() -> Path:
    return app_home_dir() / "deps"


def registry_path(deps_dir: Path) -> Path:
    return Path(deps_dir) / REGISTRY_FILENAME


def logs_dir(deps_dir: Path) -> Path:
    return Path(deps_dir) / "logs"


def dependency_log_path(deps_dir: Path, name: str) -> Path:
    return logs_dir(deps_dir) / f"{name}.log"
