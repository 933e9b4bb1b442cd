"""In-memory installer for exercising the manager without real tools."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .errors import InstallError
from .installer import InstallResult
from .models import DepKind


class FakeInstaller:
    """Installer whose next result is programmed ahead of time.

    Each programmed result is consumed by one ``install`` call. Calls are
    recorded in ``calls`` so tests can assert how often the manager asked.
    """

    def __init__(self, available: Iterable[str] = ()) -> None:
        self.available: set[str] = set(available)
        self.calls: list[tuple[DepKind, Path]] = []
        self._next: InstallResult | InstallError | None = None

    def succeed_with(self, path: str, version: str) -> "FakeInstaller":
        self._next = InstallResult(path=path, version=version)
        return self

    def fail_with(self, message: str, operation: str = "install") -> "FakeInstaller":
        self._next = InstallError(operation, message)
        return self

    async def install(self, kind: DepKind, destination: Path) -> InstallResult:
        self.calls.append((kind, Path(destination)))
        result, self._next = self._next, None
        if result is None:
            raise InstallError("install", "no result programmed")
        if isinstance(result, InstallError):
            raise result
        return result

    def is_command_available(self, command: str) -> bool:
        return command in self.available
