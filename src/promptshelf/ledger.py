"""Persistent record of what has been downloaded.

The ledger only feeds update detection; the filesystem stays the source of
truth for what actually exists locally.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .config import ledger_path
from .log import get_logger

logger = get_logger(__name__)


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class DownloadRecord:
    """One successfully materialized item."""
    item_id: str
    category: str
    source_id: str
    downloaded_at: str
    content_hash: str
    remote_ref: Optional[str] = None
    size: Optional[int] = None
    target_path: str = ""

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "category": self.category,
            "source_id": self.source_id,
            "downloaded_at": self.downloaded_at,
            "content_hash": self.content_hash,
            "remote_ref": self.remote_ref,
            "size": self.size,
            "target_path": self.target_path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DownloadRecord":
        size = data.get("size")
        return cls(
            item_id=data.get("item_id", ""),
            category=data.get("category", ""),
            source_id=data.get("source_id", ""),
            downloaded_at=data.get("downloaded_at", ""),
            content_hash=data.get("content_hash", ""),
            remote_ref=data.get("remote_ref") or None,
            size=int(size) if isinstance(size, (int, float)) else None,
            target_path=data.get("target_path", ""),
        )


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DownloadLedger:
    """Download records keyed by item id, persisted as JSON.

    Mutations build a new mapping and swap it in, so a reader never sees a
    partially updated ledger.
    """

    def __init__(self, path: Optional[Path] = None, records: Optional[Dict[str, DownloadRecord]] = None):
        self._path = path
        self._records: Dict[str, DownloadRecord] = dict(records or {})

    def records(self) -> List[DownloadRecord]:
        return list(self._records.values())

    def get(self, item_id: str) -> Optional[DownloadRecord]:
        return self._records.get(item_id)

    def is_downloaded(self, item_id: str) -> bool:
        return item_id in self._records

    def record(self, record: DownloadRecord) -> None:
        self._records = {**self._records, record.item_id: record}
        self._persist()
        logger.debug("recorded download", item_id=record.item_id)

    def remove(self, item_id: str) -> bool:
        if item_id not in self._records:
            return False
        self._records = {k: v for k, v in self._records.items() if k != item_id}
        self._persist()
        return True

    def clear(self) -> None:
        self._records = {}
        self._persist()
        logger.info("cleared download records")

    def __len__(self) -> int:
        return len(self._records)

    # --- Persistence ---

    def _persist(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"downloads": {k: v.to_dict() for k, v in self._records.items()}}
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "DownloadLedger":
        path = path or ledger_path()
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            raw = data.get("downloads", {})
            records = {
                key: DownloadRecord.from_dict(value)
                for key, value in raw.items()
                if isinstance(value, dict)
            }
            return cls(path, records)
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("unreadable download ledger, starting empty", path=str(path), error=str(e))
            return cls(path)
