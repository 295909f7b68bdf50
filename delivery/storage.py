"""
Key-Value Storage Module
========================

Small storage capability used for device-scoped calibration profiles and
local metric overrides. Values are plain strings (JSON text), so a store can
be swapped without touching the components that use it.

Stores:
- InMemoryStore: process-local dictionary (tests, one-off runs)
- JsonFileStore: single JSON file on disk (CLI, batch runs)
- OverlayStore: per-run values layered over another store
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Minimal storage capability: get/set/delete of string values.
    """
    
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError
    
    def set(self, key: str, value: str):
        raise NotImplementedError
    
    def delete(self, key: str):
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store"""
    
    def __init__(self, initial: Dict[str, str] = None):
        self._data: Dict[str, str] = dict(initial or {})
    
    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)
    
    def set(self, key: str, value: str):
        self._data[key] = value
    
    def delete(self, key: str):
        self._data.pop(key, None)
    
    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore(KeyValueStore):
    """
    Store persisted as one JSON object on disk.
    
    The file is re-read on every access so several processes sharing the same
    file see each other's writes (last write wins).
    """
    
    def __init__(self, path: str):
        """
        Initialize file store.
        
        Args:
            path: Path to the JSON file (created on first write)
        """
        self.path = Path(path)
        logger.debug(f"JsonFileStore using {self.path}")
    
    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable store file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Store file {self.path} is not a JSON object, ignoring")
            return {}
        return data
    
    def _write(self, data: Dict[str, str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    
    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        if value is None or isinstance(value, str):
            return value
        # Hand-edited files may hold the JSON value itself
        return json.dumps(value)
    
    def set(self, key: str, value: str):
        data = self._read()
        data[key] = value
        self._write(data)
    
    def delete(self, key: str):
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class OverlayStore(KeyValueStore):
    """
    Read-through overlay in front of another store.
    
    Keys present in the overlay shadow the base store; writes and deletes go
    to the base. Used for settings that apply to a single run only.
    """
    
    def __init__(self, base: KeyValueStore, overlay: Dict[str, str] = None):
        self.base = base
        self.overlay = InMemoryStore(overlay)
    
    def get(self, key: str) -> Optional[str]:
        if key in self.overlay:
            return self.overlay.get(key)
        return self.base.get(key)
    
    def set(self, key: str, value: str):
        self.base.set(key, value)
    
    def delete(self, key: str):
        self.base.delete(key)
