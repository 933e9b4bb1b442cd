"""Lifecycle management for external runtime dependencies."""

from __future__ import annotations

from .errors import (
    DepkeeperError,
    HealthCheckConfigError,
    HealthCheckTimeoutError,
    InstallError,
    NotInstalledError,
    RegistryDecodeError,
    SpawnError,
    StopAllError,
    StopError,
)
from .installer import Installer, InstallResult, SystemInstaller
from .manager import DependencyManager, DependencyStatus, ManagedProcess
from .models import (
    BinaryKind,
    CommandCheck,
    ContainerImageKind,
    DeclaresDependencies,
    Dependency,
    HttpCheck,
    NoHealthCheck,
    NpmPackageKind,
    PipPackageKind,
    TcpPortCheck,
    WebSocketCheck,
    declared_dependencies,
    resolve_asset_pattern,
)
from .registry import Registry, RegistryEntry

__version__ = "0.1.0"

__all__ = [
    "BinaryKind",
    "CommandCheck",
    "ContainerImageKind",
    "DeclaresDependencies",
    "Dependency",
    "DependencyManager",
    "DependencyStatus",
    "DepkeeperError",
    "HealthCheckConfigError",
    "HealthCheckTimeoutError",
    "HttpCheck",
    "InstallError",
    "InstallResult",
    "Installer",
    "ManagedProcess",
    "NoHealthCheck",
    "NotInstalledError",
    "NpmPackageKind",
    "PipPackageKind",
    "Registry",
    "RegistryDecodeError",
    "RegistryEntry",
    "SpawnError",
    "StopAllError",
    "StopError",
    "SystemInstaller",
    "TcpPortCheck",
    "WebSocketCheck",
    "declared_dependencies",
    "resolve_asset_pattern",
]
