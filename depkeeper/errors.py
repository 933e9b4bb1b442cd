"""Exception types raised by the dependency manager."""

from __future__ import annotations

from pathlib import Path


class DepkeeperError(RuntimeError):
    pass


class NotInstalledError(DepkeeperError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Dependency '{name}' is not installed")
        self.name = name


class InstallError(DepkeeperError):
    """An installer step failed; ``detail`` carries what the tool reported."""

    def __init__(self, operation: str, detail: str) -> None:
        detail = detail.strip()
        super().__init__(f"{operation} failed: {detail}" if detail else f"{operation} failed")
        self.operation = operation
        self.detail = detail


class SpawnError(DepkeeperError):
    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Failed to spawn '{name}': {reason}")
        self.name = name
        self.reason = reason


class HealthCheckConfigError(DepkeeperError):
    pass


class HealthCheckTimeoutError(DepkeeperError):
    def __init__(self, name: str, target: str, timeout_s: float) -> None:
        super().__init__(
            f"Health check for '{name}' ({target}) did not pass within {timeout_s:.2f}s"
        )
        self.name = name
        self.target = target
        self.timeout_s = timeout_s


class StopError(DepkeeperError):
    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Failed to stop '{name}': {reason}")
        self.name = name
        self.reason = reason


class StopAllError(DepkeeperError):
    def __init__(self, failures: dict[str, StopError]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to stop {len(failures)} dependencies: {names}")
        self.failures = failures


class RegistryDecodeError(DepkeeperError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Registry file {path} is malformed: {reason}")
        self.path = path
        self.reason = reason


__all__ = [
    "DepkeeperError",
    "HealthCheckConfigError",
    "HealthCheckTimeoutError",
    "InstallError",
    "NotInstalledError",
    "RegistryDecodeError",
    "SpawnError",
    "StopAllError",
    "StopError",
]
