"""Key-value backends for persisted credentials."""

import json
import logging
import os

log = logging.getLogger(__name__)


class KeyValueStorage:
    """Minimal string key-value surface."""

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def update(self, values: dict[str, str | None]):
        """Apply all values at once; None deletes the key."""
        raise NotImplementedError

    def set(self, key: str, value: str):
        self.update({key: value})

    def delete(self, key: str):
        self.update({key: None})


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: dict | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def update(self, values: dict[str, str | None]):
        for key, value in values.items():
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value


class JsonFileStorage(KeyValueStorage):
    """Values kept in a JSON file, merged with whatever else the file holds."""

    def __init__(self, path: str):
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def update(self, values: dict[str, str | None]):
        data = self._read()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._write(data)

    def _read(self) -> dict:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return {}
        if not isinstance(data, dict):
            log.warning("Ignoring malformed storage file %s", self._path)
            return {}
        return data

    def _write(self, data: dict):
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        # Replace in one step so a crash never leaves half-written tokens.
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, self._path)
