"""
Local State Store

Durable key/value storage for the client tier: fallback counters, health
metrics, the incident log and the force-fallback flag.

Values are JSON documents kept in memory and flushed to one file on every
write (write to a temp file, then rename). Without a path the store is
memory only, which is what tests and the server-side monitor use.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator, Optional, Union

logger = logging.getLogger(__name__)


class LocalStateStore:
    """
    JSON file backed key/value store.

    Args:
        path: File to persist to; None keeps everything in memory
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            loaded = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # A corrupt state file must not take the client down
            logger.warning(f"Ignoring unreadable local state {self.path}: {e}")
            return
        if isinstance(loaded, dict):
            self._data = loaded

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def keys(self, prefix: str = "") -> Iterator[str]:
        return (key for key in list(self._data) if key.startswith(prefix))

    def __contains__(self, key: str) -> bool:
        return key in self._data
