"""Credential storage for the API client.

Two string keys are persisted: the access token and the refresh token. The
concrete backend is pluggable; anything with the three coroutine methods of
`TokenStorage` works.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "@finance_tracker:auth_token"
REFRESH_TOKEN_KEY = "@finance_tracker:refresh_token"


class TokenStorage(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryTokenStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileTokenStorage:
    """Keeps all keys in one JSON document; a missing or corrupt file reads as empty."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable token file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._read().get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
