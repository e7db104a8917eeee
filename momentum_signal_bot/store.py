from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any

from .errors import PersistenceFailure

log = logging.getLogger("store")


class JsonStore:
    """Key/value blobs stored as ``<directory>/<key>.json``."""

    def __init__(self, directory: str):
        self.directory = directory or "."

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def load(self, key: str, default: Any) -> Any:
        path = self.path_for(key)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
            value = json.loads(raw) if raw.strip() else None
        except (OSError, ValueError) as e:
            log.error("store_load_failed key=%s path=%s err=%s", key, path, e)
            return default
        if value is None:
            return default
        if default is not None and not isinstance(value, type(default)):
            log.error(
                "store_load_wrong_type key=%s path=%s got=%s want=%s",
                key,
                path,
                type(value).__name__,
                type(default).__name__,
            )
            return default
        return value

    def save(self, key: str, value: Any) -> bool:
        """Atomically replace the blob. Failures are logged, never raised."""
        try:
            self._write(key, value)
            return True
        except PersistenceFailure as e:
            log.error("store_save_failed key=%s err=%s", key, e)
            return False

    def _write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp_path = None
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceFailure(f"{path}: {e}") from e
