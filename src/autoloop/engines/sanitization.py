"""Prompt flattening for command-line argument passing."""

from __future__ import annotations

import os
import re

_WHITESPACE_RUN = re.compile(r"\s+")

# Caret must come first: it is the escape character itself.
_CMD_ESCAPES: tuple[tuple[str, str], ...] = (
    ("^", "^^"),
    ("&", "^&"),
    ("<", "^<"),
    (">", "^>"),
    ("|", "^|"),
    ('"', '""'),
)


def sanitize_prompt(prompt: str, *, os_name: str | None = None) -> str:
    """Flatten a prompt to one line and escape cmd.exe metacharacters on Windows."""

    flattened = prompt.replace("\r\n", " ").replace("\n", " ")
    sanitized = _WHITESPACE_RUN.sub(" ", flattened).strip()

    if (os_name or os.name) != "nt":
        return sanitized
    for char, replacement in _CMD_ESCAPES:
        sanitized = sanitized.replace(char, replacement)
    return sanitized
