"""Credential storage: access token, refresh token and cached user record."""

import json
import logging
import os

log = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "auth_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_KEY = "user_data"

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


class MemoryCredentialStore:
    """Process-local store. Everything is lost on exit."""

    def __init__(self, initial: dict | None = None):
        self._data: dict = dict(initial or {})

    async def get(self, key: str):
        return self._data.get(key)

    async def set(self, key: str, value) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileCredentialStore:
    """Credentials kept in a JSON file next to other settings in the same file."""

    def __init__(self, path: str):
        self._path = os.path.abspath(path)
        self._data: dict = {}
        self._load()

    @property
    def path(self) -> str:
        return self._path

    async def get(self, key: str):
        return self._data.get(key)

    async def set(self, key: str, value) -> None:
        self._data[key] = value
        self._persist()
        if key == ACCESS_TOKEN_KEY:
            log.info("Tokens saved")

    async def remove(self, key: str) -> None:
        if key not in self._data:
            return
        del self._data[key]
        self._persist()
        if key == ACCESS_TOKEN_KEY:
            log.info("Tokens cleared")

    def _load(self):
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return
        if isinstance(data, dict):
            self._data = {k: data[k] for k in CREDENTIAL_KEYS if k in data}

    def _persist(self):
        # Read existing file, merge credentials
        data = {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        if not isinstance(data, dict):
            data = {}

        for key in CREDENTIAL_KEYS:
            if key in self._data:
                data[key] = self._data[key]
            else:
                data.pop(key, None)

        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
