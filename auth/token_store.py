from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_TYPE_KEY = "token_type"

LOGGER = logging.getLogger("alltime.token_store")


@dataclass
class Credentials:
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"


class TokenStore(ABC):
    """Credential storage shared by every request task.

    Implementations replace values atomically so concurrent readers never
    observe a half-written credential set.
    """

    @abstractmethod
    async def get_access_token(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def get_refresh_token(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def get_token_type(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def store(self, access_token: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def store_credentials(self, credentials: Credentials) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError

    async def has_valid_tokens(self) -> bool:
        return (
            await self.get_access_token() is not None
            and await self.get_refresh_token() is not None
        )


class MemoryTokenStore(TokenStore):
    def __init__(self, credentials: Credentials | None = None) -> None:
        self._tokens: dict[str, str] = {}
        if credentials is not None:
            self._tokens = asdict(credentials)

    async def get_access_token(self) -> str | None:
        return self._tokens.get(ACCESS_TOKEN_KEY)

    async def get_refresh_token(self) -> str | None:
        return self._tokens.get(REFRESH_TOKEN_KEY)

    async def get_token_type(self) -> str | None:
        return self._tokens.get(TOKEN_TYPE_KEY)

    async def store(self, access_token: str) -> bool:
        self._tokens = {**self._tokens, ACCESS_TOKEN_KEY: access_token}
        return True

    async def store_credentials(self, credentials: Credentials) -> bool:
        self._tokens = asdict(credentials)
        return True

    async def clear(self) -> None:
        self._tokens = {}


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    async def get_access_token(self) -> str | None:
        return self._read_all().get(ACCESS_TOKEN_KEY)

    async def get_refresh_token(self) -> str | None:
        return self._read_all().get(REFRESH_TOKEN_KEY)

    async def get_token_type(self) -> str | None:
        return self._read_all().get(TOKEN_TYPE_KEY)

    async def store(self, access_token: str) -> bool:
        async with self._lock:
            all_tokens = self._read_all()
            all_tokens[ACCESS_TOKEN_KEY] = access_token
            return self._write_all(all_tokens)

    async def store_credentials(self, credentials: Credentials) -> bool:
        async with self._lock:
            return self._write_all(asdict(credentials))

    async def clear(self) -> None:
        async with self._lock:
            if self._path.exists():
                self._path.unlink()

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError as error:
            raise RuntimeError("Token store file is invalid; expected JSON content.") from error
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return {key: value for key, value in raw.items() if isinstance(value, str)}

    def _write_all(self, payload: dict[str, str]) -> bool:
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
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        except OSError:
            LOGGER.exception("Failed to write token store %s", self._path)
            return False
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return True
