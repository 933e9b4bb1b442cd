"""Typed description of external runtime dependencies.

A ``Dependency`` is desired state only: components build them on demand and
the manager decides how to satisfy them. ``kind`` and ``health_check`` are
closed discriminated unions; code that dispatches on them handles every
variant and raises ``TypeError`` for anything else.
"""

from __future__ import annotations

import platform
from typing import Annotated, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class BinaryKind(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["binary"] = "binary"
    repo: str = Field(..., min_length=1, description="Release repository, e.g. owner/name.")
    asset_pattern: str = Field(
        ..., min_length=1, description="Asset file name; may contain {os} and {arch}."
    )
    version: str = Field("", description="Release tag; empty means latest.")


class ContainerImageKind(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["container_image"] = "container_image"
    image: str = Field(..., min_length=1)
    tag: str = Field("latest", min_length=1)
    ports: list[str] = Field(
        default_factory=list, description="Port mappings passed to -p, e.g. 8080:80."
    )


class NpmPackageKind(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["npm"] = "npm"
    package: str = Field(..., min_length=1)
    version: str = ""
    entry_point: str = Field(..., min_length=1)


class PipPackageKind(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["pip"] = "pip"
    package: str = Field(..., min_length=1)
    version: str = ""
    entry_point: str = Field(..., min_length=1)


DepKind = Annotated[
    Union[BinaryKind, ContainerImageKind, NpmPackageKind, PipPackageKind],
    Field(discriminator="kind"),
]


class NoHealthCheck(BaseModel):
    type: Literal["none"] = "none"


class TcpPortCheck(BaseModel):
    type: Literal["tcp"] = "tcp"
    port: int = Field(..., ge=1, le=65535)


class HttpCheck(BaseModel):
    type: Literal["http"] = "http"
    url: str = Field(..., min_length=1)


class WebSocketCheck(BaseModel):
    type: Literal["websocket"] = "websocket"
    url: str = Field(..., min_length=1)


class CommandCheck(BaseModel):
    type: Literal["command"] = "command"
    command: str


# Names become file names under the logs directory.
DEPENDENCY_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"

HealthCheck = Annotated[
    Union[NoHealthCheck, TcpPortCheck, HttpCheck, WebSocketCheck, CommandCheck],
    Field(discriminator="type"),
]


class Dependency(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., pattern=DEPENDENCY_NAME_PATTERN)
    kind: DepKind
    health_check: HealthCheck = Field(default_factory=NoHealthCheck)
    env: dict[str, str] = Field(default_factory=dict)
    args: list[str] = Field(default_factory=list)

    @property
    def kind_label(self) -> str:
        return self.kind.kind


@runtime_checkable
class DeclaresDependencies(Protocol):
    def dependencies(self) -> list[Dependency]: ...


def declared_dependencies(component: object) -> list[Dependency]:
    """Return what ``component`` declares, or nothing if it declares nothing."""

    if isinstance(component, DeclaresDependencies):
        return list(component.dependencies())
    return []


_OS_TOKENS = {
    "linux": "linux",
    "darwin": "darwin",
    "windows": "windows",
}

_ARCH_TOKENS = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "armv7l": "armv7",
    "armv7": "armv7",
    "i386": "i686",
    "i686": "i686",
    "x86": "i686",
}

UNKNOWN_PLATFORM = "unknown"


def host_os() -> str:
    return _OS_TOKENS.get(platform.system().lower(), UNKNOWN_PLATFORM)


def host_arch() -> str:
    return _ARCH_TOKENS.get(platform.machine().lower(), UNKNOWN_PLATFORM)


def resolve_asset_pattern(pattern: str) -> str:
    """Substitute ``{os}`` and ``{arch}`` with host tokens.

    Unrecognised hosts resolve to ``"unknown"``; the install step is where
    that turns into an error.
    """

    return pattern.replace("{os}", host_os()).replace("{arch}", host_arch())


__all__ = [
    "BinaryKind",
    "CommandCheck",
    "ContainerImageKind",
    "DeclaresDependencies",
    "DepKind",
    "Dependency",
    "HealthCheck",
    "HttpCheck",
    "NoHealthCheck",
    "NpmPackageKind",
    "PipPackageKind",
    "TcpPortCheck",
    "UNKNOWN_PLATFORM",
    "WebSocketCheck",
    "declared_dependencies",
    "host_arch",
    "host_os",
    "resolve_asset_pattern",
]
