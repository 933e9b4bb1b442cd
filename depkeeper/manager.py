"""Dependency orchestrator: install, start, health-check and stop.

``DependencyManager`` owns the persisted registry and the table of
processes it supervises. Each structure has its own ``asyncio.Lock`` that
is held only while the in-memory map is read or changed; disk writes,
process spawns and health polling run outside of it so a slow dependency
never blocks status reads or changes for another.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx
import psutil

from .config import AppConfig
from .errors import DepkeeperError, NotInstalledError, SpawnError, StopAllError, StopError
from .health import DEFAULT_ATTEMPT_TIMEOUT_S, DEFAULT_POLL_INTERVAL_S, HealthChecker
from .installer import Installer, SystemInstaller
from .launch import build_start_command
from .logging_utils import get_logger
from .models import Dependency
from .paths import dependency_log_path, registry_path
from .registry import Registry, RegistryEntry

_LOG = get_logger("deps.manager")


@dataclass
class ManagedProcess:
    name: str
    pid: int
    process: asyncio.subprocess.Process
    log_path: Path
    started_at: dt.datetime


@dataclass(frozen=True)
class DependencyStatus:
    name: str
    kind_label: str
    version: str
    path: str
    installed_at: dt.datetime
    running: bool
    pid: int | None
    supervised: bool


def _pid_alive(pid: int | None) -> bool:
    if pid is None:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but belongs to someone else.
        return True


class DependencyManager:
    def __init__(
        self,
        deps_dir: Path,
        installer: Installer,
        *,
        health_timeout_s: float = 30.0,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        attempt_timeout_s: float = DEFAULT_ATTEMPT_TIMEOUT_S,
        stop_timeout_s: float = 5.0,
        container_runtime: str = "docker",
        http_client_factory: Callable[..., httpx.AsyncClient] | None = None,
    ) -> None:
        self._deps_dir = Path(deps_dir)
        self._installer = installer
        self._registry_path = registry_path(self._deps_dir)
        self._registry = Registry.load(self._registry_path)
        self._registry_lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        self._processes: dict[str, ManagedProcess] = {}
        self._process_lock = asyncio.Lock()
        self._health_timeout_s = health_timeout_s
        self._stop_timeout_s = stop_timeout_s
        self._container_runtime = container_runtime
        self._health = HealthChecker(
            poll_interval_s=poll_interval_s,
            attempt_timeout_s=attempt_timeout_s,
            http_client_factory=http_client_factory,
        )

    @classmethod
    def from_config(
        cls, config: AppConfig, installer: Installer | None = None
    ) -> "DependencyManager":
        runtime = config.process.container_runtime
        return cls(
            config.deps_dir,
            installer or SystemInstaller(container_runtime=runtime),
            health_timeout_s=config.health.timeout_s,
            poll_interval_s=config.health.poll_interval_s,
            attempt_timeout_s=config.health.attempt_timeout_s,
            stop_timeout_s=config.process.stop_timeout_s,
            container_runtime=runtime,
        )

    @property
    def deps_dir(self) -> Path:
        return self._deps_dir

    def is_installed(self, name: str) -> bool:
        return self._registry.contains(name)

    def is_running(self, name: str) -> bool:
        """True only for processes this manager instance is supervising."""
        return name in self._processes

    def entry(self, name: str) -> RegistryEntry | None:
        entry = self._registry.get(name)
        return entry.model_copy() if entry is not None else None

    def status(self) -> list[DependencyStatus]:
        rows = []
        for name, entry in sorted(self._registry.items()):
            rows.append(
                DependencyStatus(
                    name=name,
                    kind_label=entry.kind_label,
                    version=entry.version,
                    path=entry.path,
                    installed_at=entry.installed_at,
                    running=entry.running,
                    pid=entry.pid,
                    supervised=name in self._processes,
                )
            )
        return rows

    async def ensure_installed(self, dep: Dependency) -> None:
        # Concurrent calls for one name may both reach the installer; the
        # second result simply overwrites the first.
        if self.is_installed(dep.name):
            _LOG.debug("{} already installed", dep.name)
            return
        _LOG.info("Installing {} ({})", dep.name, dep.kind_label)
        result = await self._installer.install(dep.kind, self._deps_dir)
        entry = RegistryEntry(
            kind_label=dep.kind_label,
            version=result.version,
            installed_at=dt.datetime.now(dt.timezone.utc),
            path=result.path,
        )
        async with self._registry_lock:
            self._registry.set(dep.name, entry)
        await self._persist()
        _LOG.info("Installed {} {} at {}", dep.name, result.version, result.path)

    async def start(self, dep: Dependency) -> None:
        if self.is_running(dep.name):
            return
        async with self._registry_lock:
            entry = self._registry.get(dep.name)
            entry = entry.model_copy() if entry is not None else None
        if entry is None:
            raise NotInstalledError(dep.name)

        command = build_start_command(dep, entry, container_runtime=self._container_runtime)
        bare_program = os.sep not in command.program and "/" not in command.program
        if bare_program and not self._installer.is_command_available(command.program):
            raise SpawnError(dep.name, f"{command.program} is not available on PATH")
        log_path = dependency_log_path(self._deps_dir, dep.name)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        env = os.environ.copy()
        env.update(dep.env)
        creationflags = 0
        if os.name == "nt":
            creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0)

        _LOG.info("Starting {}: {}", dep.name, " ".join(command.argv))
        # The child keeps its own copy of the descriptor.
        with log_path.open("wb") as log_file:
            try:
                process = await asyncio.create_subprocess_exec(
                    command.program,
                    *command.args,
                    cwd=command.cwd,
                    env=env,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=asyncio.subprocess.STDOUT,
                    creationflags=creationflags,
                )
            except OSError as exc:
                raise SpawnError(dep.name, str(exc)) from exc

        managed = ManagedProcess(
            name=dep.name,
            pid=process.pid,
            process=process,
            log_path=log_path,
            started_at=dt.datetime.now(dt.timezone.utc),
        )
        async with self._process_lock:
            existing = self._processes.get(dep.name)
            if existing is None:
                self._processes[dep.name] = managed
        if existing is not None:
            _LOG.warning("{} was started concurrently; discarding pid {}", dep.name, process.pid)
            await self._terminate(managed)
            return

        async with self._registry_lock:
            self._registry.mark_running(dep.name, process.pid)
        await self._persist()
        _LOG.info("{} running (pid {}), logs at {}", dep.name, process.pid, log_path)

    async def stop(self, name: str) -> None:
        async with self._process_lock:
            managed = self._processes.pop(name, None)
        if managed is not None:
            try:
                await self._terminate(managed)
            except StopError:
                async with self._process_lock:
                    self._processes.setdefault(name, managed)
                raise
        async with self._registry_lock:
            entry = self._registry.get(name)
            changed = entry is not None and (entry.running or entry.pid is not None)
            self._registry.mark_stopped(name)
        if changed:
            await self._persist()

    async def stop_all(self) -> None:
        """Stop every supervised process, then report all failures together."""
        async with self._process_lock:
            names = list(self._processes)
        if not names:
            return
        results = await asyncio.gather(
            *(self.stop(name) for name in names), return_exceptions=True
        )
        failures: dict[str, StopError] = {}
        for name, result in zip(names, results):
            if isinstance(result, StopError):
                failures[name] = result
            elif isinstance(result, Exception):
                failures[name] = StopError(name, str(result))
            elif isinstance(result, BaseException):
                raise result
        for name, failure in failures.items():
            _LOG.error("Stopping {} failed: {}", name, failure.reason)
        if failures:
            raise StopAllError(failures)

    async def wait_healthy(self, dep: Dependency, timeout_s: float | None = None) -> None:
        timeout = self._health_timeout_s if timeout_s is None else timeout_s
        await self._health.wait(dep.health_check, timeout, name=dep.name)

    async def ensure_running(self, dep: Dependency, timeout_s: float | None = None) -> None:
        """Install if needed, start, and wait until healthy.

        A dependency that never becomes healthy is stopped again before the
        error is raised.
        """
        await self.ensure_installed(dep)
        await self.start(dep)
        try:
            await self.wait_healthy(dep, timeout_s)
        except DepkeeperError as exc:
            _LOG.warning("{} failed its health check; stopping: {}", dep.name, exc)
            await self.stop(dep.name)
            raise

    async def uninstall(self, name: str) -> bool:
        """Forget an installed dependency. Artifacts on disk are kept."""
        await self.stop(name)
        async with self._registry_lock:
            removed = self._registry.remove(name)
        if removed is None:
            return False
        await self._persist()
        _LOG.info("Uninstalled {}", name)
        return True

    async def reconcile_stale(self) -> list[str]:
        """Mark entries stopped whose recorded pid no longer exists.

        Entries this instance supervises are skipped. A live pid is left
        alone even though it may have been reused by an unrelated process.
        """
        async with self._process_lock:
            supervised = set(self._processes)
        async with self._registry_lock:
            stale = {
                name: entry.pid
                for name, entry in self._registry.stale_running().items()
                if name not in supervised
            }
        dead = sorted(name for name, pid in stale.items() if not _pid_alive(pid))
        if not dead:
            return []
        async with self._registry_lock:
            for name in dead:
                self._registry.mark_stopped(name)
        await self._persist()
        for name in dead:
            _LOG.info("Marked {} stopped; pid {} is gone", name, stale[name])
        return dead

    async def _terminate(self, managed: ManagedProcess) -> None:
        process = managed.process
        if process.returncode is not None:
            _LOG.info("{} already exited with code {}", managed.name, process.returncode)
            return
        _LOG.info("Stopping {} (pid {})", managed.name, managed.pid)
        try:
            try:
                process.terminate()
            except ProcessLookupError:
                return
            try:
                await asyncio.wait_for(process.wait(), timeout=self._stop_timeout_s)
            except asyncio.TimeoutError:
                _LOG.warning("{} did not exit in time; killing.", managed.name)
                try:
                    process.kill()
                except ProcessLookupError:
                    return
                await process.wait()
        except OSError as exc:
            raise StopError(managed.name, str(exc)) from exc

    async def _persist(self) -> None:
        # Writes are ordered so the last one always carries the newest state.
        async with self._persist_lock:
            async with self._registry_lock:
                snapshot = self._registry.copy()
            await asyncio.to_thread(snapshot.save, self._registry_path)
