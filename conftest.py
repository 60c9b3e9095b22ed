"""Pins the messenger's environment before ``booking_messenger.config`` is imported.

``.env.test`` supplies the test endpoints; values already exported in the
shell win. The CLI token and a developer's redis are never picked up.
"""
from __future__ import annotations

import os
from pathlib import Path

ENV_FILE = Path(__file__).resolve().parent / ".env.test"
SHELL_ONLY = ("MESSENGER_TOKEN", "REDIS_URL")


def _read_env(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


for name in SHELL_ONLY:
    os.environ.pop(name, None)

if ENV_FILE.exists():
    for key, value in _read_env(ENV_FILE).items():
        os.environ.setdefault(key, value)
