"""File helpers for task source backends."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path


def read_text_exact(path: Path) -> str:
    """Read `path` without newline translation so CRLF files round-trip unchanged."""

    with path.open(encoding="utf-8", newline="") as handle:
        return handle.read()


def atomic_write_text(path: Path, text: str) -> None:
    """Replace `path` with `text` so readers never observe a half-written file.

    The replacement keeps the permission bits of the file it replaces.
    """

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
