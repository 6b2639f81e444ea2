"""Key-value persistence of JSON-serialized collections.

Each logical collection (students, teachers, assessments...) lives under its
own key and is written independently of the others; there is no transaction
spanning several keys. ``JsonFileStore`` keeps one ``<key>.json`` file per key
inside a data directory, ``MemoryStore`` keeps the serialized text in a dict.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal string key-value interface shared by the store backends."""

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def load_json(self, key: str) -> Any | None:
        """Return the decoded value stored under ``key`` or ``None`` when absent."""
        raw = self.get_item(key)
        if raw is None:
            return None
        return json.loads(raw)

    def save_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, ensure_ascii=False))


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and ephemeral servers."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)


class JsonFileStore(KeyValueStore):
    """Stores every key as a UTF-8 JSON file inside ``data_dir``."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir.resolve()
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            logger.error("Could not read %s", path)
            raise

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        # Write to a sibling file first so a crash never leaves half a blob.
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            logger.error("Could not write %s", path)
            raise

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def _path_for(self, key: str) -> Path:
        if not key or any(sep in key for sep in ("/", "\\", "..")):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._data_dir / f"{key}.json"
