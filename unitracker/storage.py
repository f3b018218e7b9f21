"""
Snapshot persistence and versioning.

This module manages the handbook snapshot file, by default:

    public/data/handbook-2026-s1.json

Design rationale:
- the crawler writes the file exactly once, at the end of a run
- `version` is a hash over the items only, so clients can detect changes
  cheaply without comparing whole payloads
- readers (API, CLI) re-parse the file only when its mtime changes
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from unitracker.model import Snapshot, SubjectRecord


VERSION_LENGTH = 12

Item = Union[SubjectRecord, Mapping[str, Any]]


def _as_dict(item: Item) -> Any:
    return item.to_dict() if isinstance(item, SubjectRecord) else item


def serialize_items(items: Iterable[Item]) -> str:
    """
    Compact, key-order preserving JSON of the items (the hashed form).
    """
    return json.dumps([_as_dict(x) for x in items], ensure_ascii=False, separators=(",", ":"))


def compute_version(items: Iterable[Item]) -> str:
    digest = hashlib.sha256(serialize_items(items).encode("utf-8")).hexdigest()
    return digest[:VERSION_LENGTH]


def write_snapshot(snapshot: Snapshot, path: str | Path) -> Path:
    """
    Write the snapshot as pretty-printed UTF-8 JSON.

    Creates parent directories if needed.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    return out


def load_snapshot(path: str | Path) -> Dict[str, Any]:
    """
    Load a snapshot file. Raises OSError / ValueError on missing or broken files.

    Older files without a `version` get one computed from their items.
    """
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Snapshot {path} is not a JSON object")
    if not payload.get("version"):
        payload["version"] = compute_version(payload.get("items") or [])
    return payload


def find_item(payload: Mapping[str, Any], code: str) -> Optional[Dict[str, Any]]:
    """
    Look up one subject by code (case-insensitive).
    """
    wanted = (code or "").strip().upper()
    if not wanted:
        return None
    for item in payload.get("items") or []:
        if str(item.get("code", "")).strip().upper() == wanted:
            return item
    return None


def snapshot_meta(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "version": payload.get("version"),
        "generatedAt": payload.get("generatedAt") or None,
        "count": len(payload.get("items") or []),
    }


class SnapshotCache:
    """
    Keeps the parsed snapshot in memory until the file's mtime changes.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._mtime_ns: Optional[int] = None
        self._payload: Optional[Dict[str, Any]] = None

    def get(self) -> Dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._payload is not None and mtime_ns == self._mtime_ns:
            return self._payload
        self._payload = load_snapshot(self.path)
        self._mtime_ns = mtime_ns
        return self._payload

    def invalidate(self) -> None:
        self._mtime_ns = None
        self._payload = None
