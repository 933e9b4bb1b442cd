from __future__ import annotations

import pytest
from pydantic import ValidationError

from depkeeper import models
from depkeeper.models import (
    BinaryKind,
    CommandCheck,
    ContainerImageKind,
    Dependency,
    NoHealthCheck,
    PipPackageKind,
    TcpPortCheck,
    declared_dependencies,
    resolve_asset_pattern,
)


def test_resolve_asset_pattern_uses_host_tokens() -> None:
    expected = "bin-" + models.host_os() + "-" + models.host_arch()
    assert resolve_asset_pattern("bin-{os}-{arch}") == expected


def test_resolve_asset_pattern_without_placeholders_is_unchanged() -> None:
    assert resolve_asset_pattern("server.tar.gz") == "server.tar.gz"


def test_resolve_asset_pattern_maps_known_platforms(monkeypatch) -> None:
    monkeypatch.setattr(models.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(models.platform, "machine", lambda: "arm64")
    assert resolve_asset_pattern("tool_{os}_{arch}.zip") == "tool_darwin_aarch64.zip"


def test_unknown_platform_degrades_to_unknown_token(monkeypatch) -> None:
    monkeypatch.setattr(models.platform, "system", lambda: "Plan9")
    monkeypatch.setattr(models.platform, "machine", lambda: "mips")
    assert resolve_asset_pattern("tool-{os}-{arch}") == "tool-unknown-unknown"


def test_dependency_parses_discriminated_variants() -> None:
    dep = Dependency.model_validate(
        {
            "name": "cache",
            "kind": {"kind": "container_image", "image": "redis", "tag": "7", "ports": ["6379:6379"]},
            "health_check": {"type": "tcp", "port": 6379},
            "env": {"MODE": "test"},
        }
    )
    assert isinstance(dep.kind, ContainerImageKind)
    assert isinstance(dep.health_check, TcpPortCheck)
    assert dep.kind_label == "container_image"
    assert dep.args == []


def test_dependency_defaults_to_no_health_check() -> None:
    dep = Dependency(
        name="tool",
        kind=PipPackageKind(package="httpie", entry_point="http"),
    )
    assert isinstance(dep.health_check, NoHealthCheck)
    assert dep.kind_label == "pip"


def test_dependency_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationError):
        Dependency.model_validate({"name": "x", "kind": {"kind": "cargo", "crate": "ripgrep"}})


def test_tcp_port_must_be_valid() -> None:
    with pytest.raises(ValidationError):
        TcpPortCheck(port=0)


@pytest.mark.parametrize("name", ["../../escaped", "logs/../x", "a/b", "a\\b", "..", ".hidden", ""])
def test_dependency_name_cannot_leave_logs_dir(name: str) -> None:
    with pytest.raises(ValidationError):
        Dependency(name=name, kind=ContainerImageKind(image="redis"))


def test_dependency_name_allows_dots_dashes_underscores() -> None:
    dep = Dependency(name="mcp-bridge_v1.2", kind=ContainerImageKind(image="redis"))
    assert dep.name == "mcp-bridge_v1.2"


def test_empty_command_check_is_accepted_by_the_model() -> None:
    # Rejected when polled, not when declared.
    assert CommandCheck(command="").command == ""


class _Channel:
    def dependencies(self) -> list[Dependency]:
        return [
            Dependency(
                name="bridge",
                kind=BinaryKind(repo="acme/bridge", asset_pattern="bridge-{os}"),
            )
        ]


class _Skill:
    pass


def test_declared_dependencies_defaults_to_empty() -> None:
    assert declared_dependencies(_Skill()) == []
    assert [dep.name for dep in declared_dependencies(_Channel())] == ["bridge"]
