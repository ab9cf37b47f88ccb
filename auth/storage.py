from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from auth.errors import StorageError


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    def __init__(self, path: str | Path = ".tp_storage.json") -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    async def set(self, key: str, value: str) -> None:
        values = self._read_all()
        values[key] = value
        self._write_all(values)

    async def delete(self, key: str) -> None:
        values = self._read_all()
        if key not in values:
            return
        del values[key]
        self._write_all(values)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError as error:
            raise StorageError(
                f"Storage file {self._path} is invalid; could not parse JSON."
            ) from error
        if not isinstance(raw, dict):
            raise StorageError(
                f"Storage file {self._path} is invalid; expected top-level JSON object."
            )
        return {str(key): str(value) for key, value in raw.items()}

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
