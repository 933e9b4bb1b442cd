"""Start-command construction per dependency kind.

No side effects: the manager spawns whatever this returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .models import (
    BinaryKind,
    ContainerImageKind,
    Dependency,
    NpmPackageKind,
    PipPackageKind,
)
from .registry import RegistryEntry

NPX = "npx"


@dataclass(frozen=True)
class StartCommand:
    program: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


def build_start_command(
    dep: Dependency,
    entry: RegistryEntry,
    *,
    container_runtime: str = "docker",
) -> StartCommand:
    kind = dep.kind
    if isinstance(kind, BinaryKind):
        return StartCommand(program=entry.path, args=list(dep.args))
    if isinstance(kind, ContainerImageKind):
        args = ["run", "--rm"]
        for mapping in kind.ports:
            args.extend(["-p", mapping])
        args.append(f"{kind.image}:{kind.tag}")
        args.extend(dep.args)
        return StartCommand(program=container_runtime, args=args)
    if isinstance(kind, NpmPackageKind):
        # npx resolves node_modules/.bin relative to the working directory.
        return StartCommand(
            program=NPX, args=[kind.entry_point, *dep.args], cwd=entry.path
        )
    if isinstance(kind, PipPackageKind):
        program = Path(entry.path) / "bin" / kind.entry_point
        return StartCommand(program=str(program), args=list(dep.args))
    raise TypeError(f"Unsupported dependency kind: {kind!r}")
