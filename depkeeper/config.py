"""Configuration loading and validation using Pydantic models."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import Dependency
from .paths import default_deps_dir


class HealthConfig(BaseModel):
    timeout_s: float = Field(
        30.0, ge=0.0, description="Deadline for a dependency to become healthy."
    )
    poll_interval_s: float = Field(
        0.25, gt=0.0, description="Delay between health check attempts."
    )
    attempt_timeout_s: float = Field(
        2.0, gt=0.0, description="Upper bound for a single health check attempt."
    )


class ProcessConfig(BaseModel):
    stop_timeout_s: float = Field(
        5.0, ge=0.0, description="Grace period after terminate before killing."
    )
    container_runtime: str = Field("docker", min_length=1)


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    log_dir: Optional[Path] = Field(
        None, description="Directory for the rotating depkeeper.log; console only when unset."
    )


class AppConfig(BaseModel):
    deps_dir: Path = Field(default_factory=default_deps_dir)
    health: HealthConfig = HealthConfig()
    process: ProcessConfig = ProcessConfig()
    logging: LoggingConfig = LoggingConfig()
    reconcile_on_startup: bool = Field(
        True, description="Mark registry entries stopped when their pid is gone."
    )
    dependencies: list[Dependency] = Field(default_factory=list)

    @field_validator("deps_dir")
    @classmethod
    def _expand_deps_dir(cls, value: Path) -> Path:
        return Path(value).expanduser()

    @field_validator("dependencies")
    @classmethod
    def _unique_names(cls, value: list[Dependency]) -> list[Dependency]:
        seen: set[str] = set()
        for dep in value:
            if dep.name in seen:
                raise ValueError(f"Duplicate dependency name '{dep.name}'")
            seen.add(dep.name)
        return value

    def dependency(self, name: str) -> Dependency | None:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None


def load_config(path: Path | str) -> AppConfig:
    """Load YAML configuration from disk; a missing file yields defaults."""

    config_path = Path(path)
    if not config_path.exists():
        return AppConfig()
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return AppConfig.model_validate(data or {})
