"""Persisted record of installed dependencies (registry.json)."""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import RegistryDecodeError
from .fs_utils import atomic_write_text


class RegistryEntry(BaseModel):
    kind_label: str
    version: str
    installed_at: dt.datetime
    path: str
    running: bool = False
    pid: int | None = Field(None, ge=1)


_ENTRIES = TypeAdapter(dict[str, RegistryEntry])


class Registry:
    """Mapping of dependency name to ``RegistryEntry``.

    Pure bookkeeping: it knows nothing about processes, and callers are
    responsible for serialising access.
    """

    def __init__(self, entries: dict[str, RegistryEntry] | None = None) -> None:
        self._entries: dict[str, RegistryEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: Path) -> "Registry":
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise RegistryDecodeError(path, str(exc)) from exc
        if not raw.strip():
            return cls()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise RegistryDecodeError(path, str(exc)) from exc
        try:
            entries = _ENTRIES.validate_python(data)
        except ValidationError as exc:
            raise RegistryDecodeError(path, str(exc)) from exc
        return cls(entries)

    def save(self, path: Path) -> None:
        payload = _ENTRIES.dump_python(self._entries, mode="json")
        atomic_write_text(Path(path), json.dumps(payload, indent=2, sort_keys=True))

    def get(self, name: str) -> RegistryEntry | None:
        return self._entries.get(name)

    def set(self, name: str, entry: RegistryEntry) -> None:
        self._entries[name] = entry

    def remove(self, name: str) -> RegistryEntry | None:
        return self._entries.pop(name, None)

    def contains(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> list[str]:
        return list(self._entries)

    def items(self) -> list[tuple[str, RegistryEntry]]:
        return list(self._entries.items())

    def mark_running(self, name: str, pid: int) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        entry.running = True
        entry.pid = pid
        return True

    def mark_stopped(self, name: str) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        entry.running = False
        entry.pid = None
        return True

    def stale_running(self) -> dict[str, RegistryEntry]:
        """Entries persisted as running; used to reconcile after a restart."""

        return {name: entry for name, entry in self._entries.items() if entry.running}

    def copy(self) -> "Registry":
        return Registry(
            {name: entry.model_copy(deep=True) for name, entry in self._entries.items()}
        )

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)
