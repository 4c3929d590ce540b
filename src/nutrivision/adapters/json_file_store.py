"""Local store backed by one JSON file per key."""

import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from nutrivision.services.local_store import LocalStore

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class JsonFileStore(LocalStore):
    """Directory of `<key>.json` files, replaced atomically on every write."""

    directory: Path

    @classmethod
    def create(cls, directory: str | Path) -> "JsonFileStore":
        """Create a store, making the directory if needed."""
        path = Path(directory).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return cls(directory=path)

    def get(self, key: str) -> object | None:
        """Return the decoded value for a key."""
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Corrupt local store entry {key!r}") from exc

    def set(self, key: str, value: object) -> None:
        """Write a value through a temp file so readers never see partial JSON."""
        path = self._path(key)
        handle, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{key}.", suffix=".tmp"
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as tmp:
                json.dump(value, tmp, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        """Delete the file for a key."""
        self._path(key).unlink(missing_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid local store key {key!r}")
        return self.directory / f"{key}.json"
