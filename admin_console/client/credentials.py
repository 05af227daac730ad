"""
MODULE OVERVIEW:
The Credential Store: the one place the bearer token lives.

WHAT IS HAPPENING HERE:
A browser keeps the token in localStorage; we keep it behind a small persistence
interface. The JSON file backend survives a process restart the same way localStorage
survives a page reload. The store caches the value in memory, so every read is a cheap
snapshot and only `set`/`clear` touch the disk.

Storage trouble (missing permissions, a corrupt file) never raises to callers: a token we
cannot read simply means "not authenticated".
"""
import json
import os
from pathlib import Path
from typing import Dict, Protocol

from loguru import logger

from admin_console.shared.config import settings


class CredentialPersistence(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class MemoryCredentialPersistence:
    def __init__(self, initial: Dict[str, str] | None = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileCredentialPersistence:
    """Key-value persistence in a single JSON document, written atomically."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as file:
            data = json.load(file)
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as file:
            json.dump(data, file)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) and value else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def clear(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


class CredentialStore:
    def __init__(self, persistence: CredentialPersistence | None = None, key: str = settings.CREDENTIALS_KEY):
        self.persistence = persistence or MemoryCredentialPersistence()
        self.key = key
        self._token: str | None = None

    def init(self) -> str | None:
        """Load the persisted credential, if any, into memory."""
        try:
            self._token = self.persistence.get(self.key)
        except (OSError, ValueError) as e:
            logger.warning(f"credential_store=load key={self.key} reason='{e}'")
            self._token = None
        return self._token

    def get(self) -> str | None:
        return self._token

    def set(self, token: str) -> None:
        self._token = token
        try:
            self.persistence.set(self.key, token)
        except (OSError, ValueError) as e:
            logger.warning(f"credential_store=persist key={self.key} reason='{e}'")

    def clear(self) -> None:
        self._token = None
        try:
            self.persistence.clear(self.key)
        except (OSError, ValueError) as e:
            logger.warning(f"credential_store=clear key={self.key} reason='{e}'")

    @property
    def authenticated(self) -> bool:
        return self._token is not None


def file_backed_store() -> CredentialStore:
    store = CredentialStore(JsonFileCredentialPersistence(settings.CREDENTIALS_FILE), settings.CREDENTIALS_KEY)
    store.init()
    return store
