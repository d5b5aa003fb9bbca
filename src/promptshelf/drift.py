"""Update detection for downloaded items.

Pure functions over snapshots. When neither signal is available the answer is
"no update".
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from .catalog.models import CatalogEntry
from .ledger import DownloadRecord


def has_update(record: DownloadRecord, live: CatalogEntry) -> bool:
    if live.remote_ref and record.remote_ref and live.remote_ref != record.remote_ref:
        return True
    if record.size is not None and live.size is not None:
        return live.size != record.size
    return False


def find_updated(records: Iterable[DownloadRecord], live_entries: Iterable[CatalogEntry]) -> List[DownloadRecord]:
    """Records whose live counterpart (joined by item id) has changed."""
    live_by_id: Dict[str, CatalogEntry] = {entry.item_id: entry for entry in live_entries}
    updated = []
    for record in records:
        live = live_by_id.get(record.item_id)
        if live is not None and has_update(record, live):
            updated.append(record)
    return updated
