"""Versioned JSON save file.

A save is written as an envelope::

    {"version": 1, "saved_at": <epoch ms>, "data": {...}}

Older saves were the bare payload (top-level ``completed``, ``score`` or
``filesystem`` keys); those are still returned as-is. I/O problems are
logged and reported as a failed save / missing load, never raised.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from .metrics import get_metrics_collector

if TYPE_CHECKING:
    from .errors import OpResult
    from .filesystem import FileSystem

LOGGER = logging.getLogger(__name__)

STORAGE_VERSION = 1
LEGACY_KEYS = ("completed", "score", "filesystem")


def is_legacy_payload(data: Any) -> bool:
    return isinstance(data, dict) and any(key in data for key in LEGACY_KEYS)


class SaveStore:
    """Reads and writes the save envelope at ``path``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def save(self, data: Dict[str, Any]) -> bool:
        payload = {
            "version": STORAGE_VERSION,
            "saved_at": int(time.time() * 1000),
            "data": data,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            LOGGER.warning("Failed to save progress to %s: %s", self.path, e)
            return False
        LOGGER.debug("Saved progress to %s", self.path)
        return True

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the saved data, a legacy payload, or None."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            LOGGER.warning("Failed to read save file %s: %s", self.path, e)
            return None
        if not raw.strip():
            return None

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            LOGGER.warning("Discarding corrupt save file %s: %s", self.path, e)
            self.clear()
            return None

        if isinstance(parsed, dict):
            data = parsed.get("data")
            if parsed.get("version") == STORAGE_VERSION and isinstance(data, dict):
                return data
            if is_legacy_payload(parsed):
                LOGGER.info("Loaded legacy save format from %s", self.path)
                return parsed
        return None

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            LOGGER.warning("Failed to remove save file %s: %s", self.path, e)


def save_session(
    store: SaveStore, fs: "FileSystem", extra: Optional[Dict[str, Any]] = None
) -> bool:
    """Save the filesystem snapshot plus any caller data (mission progress)."""
    data: Dict[str, Any] = dict(extra or {})
    data["filesystem"] = fs.snapshot()
    return store.save(data)


def load_session(store: SaveStore, fs: "FileSystem") -> Optional["OpResult"]:
    """Restore ``fs`` from the store.

    Returns None when there is no saved filesystem, otherwise the result of
    ``FileSystem.restore``.
    """
    data = store.load()
    if not data or "filesystem" not in data:
        return None
    result = fs.restore(data["filesystem"])
    get_metrics_collector().record_restore(result.success)
    if not result.success:
        LOGGER.warning("Saved filesystem rejected: %s", result.error)
    return result
