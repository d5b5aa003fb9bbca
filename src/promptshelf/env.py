""".env file loading.

Values are read from, lowest priority first:
1. <config dir>/.env
2. ./.env
Variables already present in the process environment always win.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, ignoring comments, blanks and ``export``."""
    values: Dict[str, str] = {}
    if not path.is_file():
        return values

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return values

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = _unquote(value.strip())

    return values


def env_files(config_dir: Path) -> Iterable[Path]:
    return (config_dir / ".env", Path.cwd() / ".env")


def load_env_files(config_dir: Path) -> None:
    """Merge .env files into ``os.environ`` without overwriting existing keys."""
    merged: Dict[str, str] = {}
    for path in env_files(config_dir):
        merged.update(parse_env_file(path))

    for key, value in merged.items():
        os.environ.setdefault(key, value)
