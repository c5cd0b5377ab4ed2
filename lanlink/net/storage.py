"""Key-value storage used to remember pairings.

The pairing directory only needs four string operations, so any backend
that provides them can be plugged in (``StorageLayer``).  Two are shipped:

- ``MemoryStorage`` keeps everything in a dict; pairings vanish on exit.
- ``JsonFileStorage`` writes through to a single JSON file with ``0600``
  permissions, since stored values contain shared keys.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class StorageLayer(Protocol):
    """Async string key-value store."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def list_keys(self) -> list[str]: ...


class MemoryStorage:
    """Process-local storage backed by a dict."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._items)


class JsonFileStorage:
    """Storage persisted as one JSON object on disk.

    The file is read once by :meth:`load` and rewritten on every mutation.
    Writes run in a worker thread and are serialised with an ``asyncio.Lock``.

    Parameters
    ----------
    path:
        Filesystem path of the JSON file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._items: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # -- persistence ---------------------------------------------------------

    def load(self) -> None:
        """Load the file.  No-op if it doesn't exist."""
        if not self.path.exists():
            logger.debug(f"[LanLink/Storage] {self.path} not found, starting empty")
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.error(f"[LanLink/Storage] failed to load {self.path}: {exc}")
            return
        if not isinstance(raw, dict):
            logger.error(f"[LanLink/Storage] {self.path} does not hold a JSON object, ignoring")
            return
        self._items = {str(k): v for k, v in raw.items() if isinstance(v, str)}
        logger.info(f"[LanLink/Storage] loaded {len(self._items)} item(s) from {self.path}")

    async def _save(self) -> None:
        # Snapshot on the loop, write in a worker thread.
        text = json.dumps(self._items, indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write, text)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass  # Windows doesn't support Unix permissions

    # -- StorageLayer --------------------------------------------------------

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value
            await self._save()

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            if self._items.pop(key, None) is not None:
                await self._save()

    async def list_keys(self) -> list[str]:
        return list(self._items)
