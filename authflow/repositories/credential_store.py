"""Credential stores for the last-used sign-in method.

Provides:
- InMemoryCredentialStore for tests and ephemeral sessions
- JsonFileCredentialStore persisting a small JSON document on disk
"""

import asyncio
from pathlib import Path

from pydantic import ValidationError

from authflow.auth.schemas import LastUsedMethod
from authflow.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryCredentialStore:
    """Credential store that keeps the record for the lifetime of the process."""

    def __init__(self, record: LastUsedMethod | None = None) -> None:
        self._record = record

    async def load(self) -> LastUsedMethod | None:
        return self._record

    async def save(self, record: LastUsedMethod) -> None:
        self._record = record

    async def clear(self) -> None:
        self._record = None


class JsonFileCredentialStore:
    """Credential store backed by a JSON file.

    The file holds `{"method": "phone" | "google", "phone_number": ...}`.
    A missing or unreadable file loads as `None`.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> LastUsedMethod | None:
        return await asyncio.to_thread(self._read)

    async def save(self, record: LastUsedMethod) -> None:
        await asyncio.to_thread(self._write, record)

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read(self) -> LastUsedMethod | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return None

        try:
            return LastUsedMethod.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Ignoring unreadable credential file {self.path}")
            return None

    def _write(self, record: LastUsedMethod) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(record.model_dump_json(), encoding="utf-8")
