from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from depkeeper.manager import DependencyManager  # noqa: E402
from depkeeper.models import BinaryKind, Dependency  # noqa: E402
from depkeeper.testing import FakeInstaller  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPKEEPER_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("DEPKEEPER_CONFIG", raising=False)


@pytest.fixture
def fake_installer() -> FakeInstaller:
    return FakeInstaller(available={"docker", "npx"})


@pytest.fixture
def deps_dir(tmp_path: Path) -> Path:
    return tmp_path / "deps"


@pytest.fixture
def manager_factory(deps_dir: Path, fake_installer: FakeInstaller):
    def _factory(**kwargs) -> DependencyManager:
        kwargs.setdefault("poll_interval_s", 0.05)
        kwargs.setdefault("stop_timeout_s", 2.0)
        return DependencyManager(deps_dir, fake_installer, **kwargs)

    return _factory


@pytest.fixture
def binary_dep():
    def _make(name: str = "echo-svc", args: list[str] | None = None, **kwargs) -> Dependency:
        return Dependency(
            name=name,
            kind=BinaryKind(repo="example/echo", asset_pattern="echo-{os}-{arch}", version="v1.0.0"),
            args=args or [],
            **kwargs,
        )

    return _make


@pytest.fixture
def tool_script(tmp_path: Path):
    """Write an executable shell script standing in for a real tool."""

    def _write(name: str, body: str) -> Path:
        path = tmp_path / "tools" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(0o755)
        return path

    return _write
