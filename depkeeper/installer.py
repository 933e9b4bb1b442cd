"""Install capability used by the dependency manager.

``Installer`` is the only seam between the manager and real package
managers, container runtimes or release downloads. ``SystemInstaller``
shells out to the real tools; ``depkeeper.testing.FakeInstaller`` stands in
for it in tests.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from .errors import InstallError
from .logging_utils import get_logger
from .models import (
    BinaryKind,
    ContainerImageKind,
    DepKind,
    NpmPackageKind,
    PipPackageKind,
    UNKNOWN_PLATFORM,
    resolve_asset_pattern,
)

_LOG = get_logger("deps.installer")

BinaryFetcher = Callable[[BinaryKind, str, Path], Awaitable[str]]
"""Download ``asset_name`` for ``kind`` to the target path; return the version."""


@dataclass(frozen=True)
class InstallResult:
    path: str
    version: str


class Installer(Protocol):
    async def install(self, kind: DepKind, destination: Path) -> InstallResult: ...

    def is_command_available(self, command: str) -> bool: ...


@dataclass(frozen=True)
class _ToolOutput:
    returncode: int
    stdout: str
    stderr: str


async def _run_tool(operation: str, argv: list[str]) -> _ToolOutput:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise InstallError(operation, f"could not run {argv[0]}: {exc}") from exc
    stdout, stderr = await proc.communicate()
    return _ToolOutput(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _require_success(operation: str, output: _ToolOutput) -> None:
    if output.returncode != 0:
        detail = output.stderr.strip() or output.stdout.strip()
        raise InstallError(operation, f"exit code {output.returncode}: {detail}")


def _package_dir_name(package: str) -> str:
    return package.replace("/", "__").lstrip("@") or package


def _pip_requirement(package: str, version: str) -> str:
    if not version:
        return package
    if version[0] in "=<>!~":
        return f"{package}{version}"
    return f"{package}=={version}"


class SystemInstaller:
    """Installs dependencies with the host's real tools.

    Holds only configuration, so concurrent installs of distinct
    dependencies do not interfere.
    """

    def __init__(
        self,
        *,
        container_runtime: str = "docker",
        npm: str = "npm",
        python: str | None = None,
        binary_fetcher: BinaryFetcher | None = None,
    ) -> None:
        self._container_runtime = container_runtime
        self._npm = npm
        self._python = python or sys.executable
        self._binary_fetcher = binary_fetcher

    def is_command_available(self, command: str) -> bool:
        if not command:
            return False
        try:
            return shutil.which(command) is not None
        except OSError:
            return False

    async def install(self, kind: DepKind, destination: Path) -> InstallResult:
        destination = Path(destination)
        if isinstance(kind, BinaryKind):
            return await self._install_binary(kind, destination)
        if isinstance(kind, ContainerImageKind):
            return await self._pull_image(kind)
        if isinstance(kind, NpmPackageKind):
            return await self._install_npm(kind, destination)
        if isinstance(kind, PipPackageKind):
            return await self._install_pip(kind, destination)
        raise TypeError(f"Unsupported dependency kind: {kind!r}")

    async def _install_binary(self, kind: BinaryKind, destination: Path) -> InstallResult:
        asset_name = resolve_asset_pattern(kind.asset_pattern)
        if UNKNOWN_PLATFORM in asset_name and UNKNOWN_PLATFORM not in kind.asset_pattern:
            raise InstallError(
                "binary download",
                f"no release asset for this platform ({asset_name} from {kind.repo})",
            )
        target = destination / "bin" / asset_name
        if self._binary_fetcher is None:
            raise InstallError(
                "binary download",
                f"no binary fetcher configured; cannot fetch {asset_name} from {kind.repo}",
            )
        target.parent.mkdir(parents=True, exist_ok=True)
        _LOG.info("Fetching {} from {} into {}", asset_name, kind.repo, target)
        version = await self._binary_fetcher(kind, asset_name, target)
        if not target.exists():
            raise InstallError("binary download", f"fetcher did not produce {target}")
        return InstallResult(path=str(target), version=version or kind.version or "latest")

    async def _pull_image(self, kind: ContainerImageKind) -> InstallResult:
        reference = f"{kind.image}:{kind.tag}"
        _LOG.info("Pulling container image {}", reference)
        output = await _run_tool(
            f"{self._container_runtime} pull",
            [self._container_runtime, "pull", reference],
        )
        _require_success(f"{self._container_runtime} pull {reference}", output)
        return InstallResult(path=reference, version=kind.tag)

    async def _install_npm(self, kind: NpmPackageKind, destination: Path) -> InstallResult:
        prefix = destination / "npm" / _package_dir_name(kind.package)
        prefix.mkdir(parents=True, exist_ok=True)
        spec = f"{kind.package}@{kind.version}" if kind.version else kind.package
        _LOG.info("Installing npm package {} into {}", spec, prefix)
        output = await _run_tool(
            "npm install",
            [self._npm, "install", "--prefix", str(prefix), spec],
        )
        _require_success(f"npm install {spec}", output)
        version = _read_npm_version(prefix, kind.package) or kind.version or "latest"
        return InstallResult(path=str(prefix), version=version)

    async def _install_pip(self, kind: PipPackageKind, destination: Path) -> InstallResult:
        venv_dir = destination / "venvs" / kind.package
        venv_dir.parent.mkdir(parents=True, exist_ok=True)
        _LOG.info("Creating virtual environment {}", venv_dir)
        output = await _run_tool("venv", [self._python, "-m", "venv", str(venv_dir)])
        _require_success("venv", output)

        pip = str(venv_dir / "bin" / "pip")
        requirement = _pip_requirement(kind.package, kind.version)
        _LOG.info("Installing {} into {}", requirement, venv_dir)
        output = await _run_tool("pip install", [pip, "install", requirement])
        _require_success("pip install", output)

        version = await _read_pip_version(pip, kind.package)
        return InstallResult(path=str(venv_dir), version=version or kind.version or "latest")


def _read_npm_version(prefix: Path, package: str) -> str | None:
    manifest = prefix / "node_modules" / package / "package.json"
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    version = data.get("version") if isinstance(data, dict) else None
    return str(version) if version else None


async def _read_pip_version(pip: str, package: str) -> str | None:
    try:
        output = await _run_tool("pip show", [pip, "show", package])
    except InstallError:
        return None
    if output.returncode != 0:
        return None
    for line in output.stdout.splitlines():
        key, _, value = line.partition(":")
        if key.strip().lower() == "version" and value.strip():
            return value.strip()
    return None
