"""Command line entrypoint for depkeeper."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

import yaml
from loguru import logger

from .config import AppConfig, load_config
from .errors import DepkeeperError
from .logging_utils import configure_logging
from .manager import DependencyManager
from .models import Dependency


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="depkeeper")
    p.add_argument(
        "--config",
        default=os.environ.get("DEPKEEPER_CONFIG", "depkeeper.yml"),
        help="Path to config YAML (default: depkeeper.yml or DEPKEEPER_CONFIG).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    status = sub.add_parser("status", help="Show installed dependencies.")
    status.add_argument("--json", action="store_true", help="Emit JSON.")

    install = sub.add_parser("install", help="Install configured dependencies.")
    install.add_argument("names", nargs="*", help="Subset to install (default: all).")

    up = sub.add_parser("up", help="Install, start and supervise until interrupted.")
    up.add_argument("names", nargs="*", help="Subset to run (default: all).")
    up.add_argument("--timeout", type=float, default=None, help="Health check timeout.")

    sub.add_parser("reconcile", help="Mark dead 'running' registry entries stopped.")

    uninstall = sub.add_parser("uninstall", help="Remove a dependency from the registry.")
    uninstall.add_argument("name")

    sub.add_parser("print-config", help="Load config and print resolved values.")

    return p.parse_args(argv)


def _select(config: AppConfig, names: list[str]) -> list[Dependency]:
    if not names:
        return list(config.dependencies)
    selected = []
    unknown = []
    for name in names:
        dep = config.dependency(name)
        if dep is None:
            unknown.append(name)
        else:
            selected.append(dep)
    if unknown:
        logger.error("Unknown dependencies: {}", ", ".join(unknown))
        raise SystemExit(2)
    return selected


def _print_status(manager: DependencyManager, as_json: bool) -> None:
    rows = manager.status()
    if as_json:
        payload = [
            {
                "name": row.name,
                "kind": row.kind_label,
                "version": row.version,
                "path": row.path,
                "installed_at": row.installed_at.isoformat(),
                "running": row.running,
                "pid": row.pid,
            }
            for row in rows
        ]
        print(json.dumps(payload, indent=2))
        return
    if not rows:
        print("No dependencies installed.")
        return
    for row in rows:
        state = f"running (pid {row.pid})" if row.running else "stopped"
        print(f"{row.name:<24} {row.kind_label:<16} {row.version:<16} {state}")


async def _install(manager: DependencyManager, deps: list[Dependency]) -> int:
    failed = 0
    for dep in deps:
        try:
            await manager.ensure_installed(dep)
        except DepkeeperError as exc:
            logger.error("{}: {}", dep.name, exc)
            failed += 1
    return 1 if failed else 0


async def _up(manager: DependencyManager, deps: list[Dependency], timeout_s: float | None) -> int:
    try:
        for dep in deps:
            await manager.ensure_running(dep, timeout_s)
        logger.info("{} dependencies running. Press Ctrl+C to stop.", len(deps))
        while True:
            await asyncio.sleep(0.5)
    finally:
        try:
            await manager.stop_all()
        except DepkeeperError:
            logger.exception("Error while stopping dependencies")


async def _run(cmd: str, args: argparse.Namespace, config: AppConfig) -> int:
    manager = DependencyManager.from_config(config)
    if config.reconcile_on_startup:
        await manager.reconcile_stale()

    if cmd == "status":
        _print_status(manager, args.json)
        return 0
    if cmd == "install":
        return await _install(manager, _select(config, args.names))
    if cmd == "up":
        return await _up(manager, _select(config, args.names), args.timeout)
    if cmd == "reconcile":
        corrected = await manager.reconcile_stale()
        for name in corrected:
            print(name)
        return 0
    if cmd == "uninstall":
        if not await manager.uninstall(args.name):
            logger.warning("{} is not installed", args.name)
        return 0
    raise ValueError(f"Unknown command {cmd}")


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = _parse_args(argv)
    cmd = args.cmd

    config_path = Path(args.config)
    try:
        config = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Invalid config {config_path}: {exc}", file=sys.stderr)
        raise SystemExit(2)
    configure_logging(config.logging)

    if cmd == "print-config":
        print(json.dumps(config.model_dump(mode="json"), indent=2))
        return

    try:
        raise SystemExit(asyncio.run(_run(cmd, args, config)))
    except DepkeeperError as exc:
        logger.error("{}", exc)
        raise SystemExit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
