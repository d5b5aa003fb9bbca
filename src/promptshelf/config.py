from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .env import load_env_files
from .log import get_logger

logger = get_logger(__name__)

APP = "promptshelf"

DEFAULT_CACHE_TTL_S = 60 * 60
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_PACING_S = 0.5
DEFAULT_MAX_DEPTH = 32


def config_dir() -> Path:
    """
    Cross-platform config directory:
      - Windows: %APPDATA%\\promptshelf
      - macOS/Linux: $XDG_CONFIG_HOME/promptshelf or ~/.config/promptshelf
    """
    if os.name == "nt":
        base = os.environ.get("APPDATA") or str(Path.home())
        return Path(base) / APP
    return Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))) / APP


def config_path() -> Path:
    return config_dir() / "config.json"


def sources_path() -> Path:
    return config_dir() / "sources.json"


def ledger_path() -> Path:
    return config_dir() / "downloads.json"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")



def _env_number(name: str, cast: Callable[[str], Any], current: Any) -> Any:
    """Numeric env override; unparseable values keep ``current``."""
    raw = os.environ.get(name)
    if raw is None:
        return current
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("ignoring invalid number", variable=name, value=raw)
        return current


@dataclass
class Settings:
    root_dir: str = ".github"            # local target root for downloads
    cache_ttl_s: int = DEFAULT_CACHE_TTL_S
    check_for_updates: bool = True
    timeout_s: float = DEFAULT_TIMEOUT_S
    pacing_s: float = DEFAULT_PACING_S   # delay between bundle items
    max_depth: int = DEFAULT_MAX_DEPTH   # skill folder recursion cap
    enterprise_token: str = ""
    tokens: Dict[str, str] = field(default_factory=dict)  # source id -> token
    log_level: str = "WARNING"

    @staticmethod
    def load(path: Optional[Path] = None) -> "Settings":
        path = path or config_path()

        # .env values only fill variables not already exported
        load_env_files(path.parent)

        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                data = {}
            if not isinstance(data, dict):
                data = {}

        tokens = data.get("tokens", {})
        s = Settings(
            root_dir=str(data.get("root_dir", Settings.root_dir)),
            cache_ttl_s=int(data.get("cache_ttl_s", Settings.cache_ttl_s)),
            check_for_updates=bool(data.get("check_for_updates", Settings.check_for_updates)),
            timeout_s=float(data.get("timeout_s", Settings.timeout_s)),
            pacing_s=float(data.get("pacing_s", Settings.pacing_s)),
            max_depth=int(data.get("max_depth", Settings.max_depth)),
            enterprise_token=str(data.get("enterprise_token", Settings.enterprise_token)),
            tokens={str(k): str(v) for k, v in tokens.items()} if isinstance(tokens, dict) else {},
            log_level=str(data.get("log_level", Settings.log_level)),
        )

        # Environment overrides (highest priority)
        s.root_dir = os.environ.get("PROMPTSHELF_ROOT", s.root_dir)
        s.cache_ttl_s = _env_number("PROMPTSHELF_CACHE_TTL", int, s.cache_ttl_s)
        s.timeout_s = _env_number("PROMPTSHELF_TIMEOUT", float, s.timeout_s)
        s.pacing_s = _env_number("PROMPTSHELF_PACING", float, s.pacing_s)
        if "PROMPTSHELF_CHECK_UPDATES" in os.environ:
            s.check_for_updates = _as_bool(os.environ["PROMPTSHELF_CHECK_UPDATES"])
        s.log_level = os.environ.get("PROMPTSHELF_LOG_LEVEL", s.log_level)
        s.enterprise_token = os.environ.get("PROMPTSHELF_ENTERPRISE_TOKEN", s.enterprise_token)

        return s

    def save(self, path: Optional[Path] = None) -> Path:
        path = path or config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "root_dir": self.root_dir,
            "cache_ttl_s": self.cache_ttl_s,
            "check_for_updates": self.check_for_updates,
            "timeout_s": self.timeout_s,
            "pacing_s": self.pacing_s,
            "max_depth": self.max_depth,
            "enterprise_token": self.enterprise_token,
            "tokens": self.tokens,
            "log_level": self.log_level,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    def target_root(self, cwd: Optional[Path] = None) -> Path:
        """Absolute download root; relative roots resolve against ``cwd``."""
        root = Path(self.root_dir).expanduser()
        if not root.is_absolute():
            root = (cwd or Path.cwd()) / root
        return root
