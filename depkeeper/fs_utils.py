"""Filesystem helpers for atomic writes."""

from __future__ import annotations

import os
import uuid
from pathlib import Path


def fsync_file(path: Path) -> None:
    # Windows rejects fsync on read-only handles.
    mode = "r+b" if os.name == "nt" else "rb"
    try:
        with path.open(mode) as handle:
            os.fsync(handle.fileno())
    except FileNotFoundError:
        return


def fsync_dir(path: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` so readers see either the old file or the new one.

    The temporary file is a sibling of ``path``, so the final rename never
    crosses a filesystem boundary.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".tmp-{path.name}-{uuid.uuid4().hex}")
    try:
        tmp_path.write_text(text, encoding="utf-8")
        fsync_file(tmp_path)
        os.replace(tmp_path, path)
        fsync_dir(path.parent)
    finally:
        tmp_path.unlink(missing_ok=True)
