# FILE: capsule/services/metadata_store.py
"""
Metadata key-value store for memory records

One JSON document per key. Writes go to a temporary file that is atomically
renamed over the target, so a reader never observes a half-written record.
Only single-key operations are offered; there is no enumeration.
"""
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import aiofiles
import aiofiles.os

from capsule.config import get_settings
from capsule.services.errors import KeyExistsError, StorageError

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

STORE_NAME = "metadata"


def is_valid_key(key: str) -> bool:
    """Keys double as file names, so only a safe character set is accepted"""
    return bool(key) and bool(_KEY_PATTERN.match(key))


class MetadataStore:
    """File-backed JSON key-value store"""

    def __init__(self, metadata_dir: Optional[str] = None):
        self.metadata_dir = Path(metadata_dir or get_settings().metadata_dir)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.metadata_dir / f"{key}.json"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None if absent"""
        if not is_valid_key(key):
            return None

        path = self._path(key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Metadata read failed for {key}: {e}")
            raise StorageError(f"read failed: {e.strerror or e}", store=STORE_NAME, key=key) from e

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt metadata document for {key}: {e}")
            raise StorageError("stored document is not valid JSON", store=STORE_NAME, key=key) from e

    async def exists(self, key: str) -> bool:
        if not is_valid_key(key):
            return False
        return await aiofiles.os.path.exists(self._path(key))

    async def _write_temp(self, key: str, value: Dict[str, Any]) -> Path:
        tmp_path = self.metadata_dir / f".{key}.{uuid4().hex}.tmp"
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(value, ensure_ascii=False, indent=2))
        return tmp_path

    @staticmethod
    def _discard(tmp_path: Optional[Path]):
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    async def put(self, key: str, value: Dict[str, Any]):
        """Store a document, replacing any previous value"""
        if not is_valid_key(key):
            raise StorageError("invalid key", store=STORE_NAME, key=key)

        tmp_path = None
        try:
            tmp_path = await self._write_temp(key, value)
            await aiofiles.os.replace(tmp_path, self._path(key))
        except OSError as e:
            logger.error(f"Metadata write failed for {key}: {e}")
            self._discard(tmp_path)
            raise StorageError(f"write failed: {e.strerror or e}", store=STORE_NAME, key=key) from e

        logger.debug(f"Metadata stored: {key}")

    async def create(self, key: str, value: Dict[str, Any]):
        """
        Store a document only if the key is free.

        The temp file is hard-linked into place, which fails atomically when
        the target exists, so two racing creates cannot both succeed.
        Raises KeyExistsError when the key is taken.
        """
        if not is_valid_key(key):
            raise StorageError("invalid key", store=STORE_NAME, key=key)

        tmp_path = None
        try:
            tmp_path = await self._write_temp(key, value)
            await aiofiles.os.link(tmp_path, self._path(key))
        except FileExistsError as e:
            logger.warning(f"Metadata create refused, key exists: {key}")
            raise KeyExistsError("key already exists", store=STORE_NAME, key=key) from e
        except OSError as e:
            logger.error(f"Metadata create failed for {key}: {e}")
            raise StorageError(f"write failed: {e.strerror or e}", store=STORE_NAME, key=key) from e
        finally:
            self._discard(tmp_path)

        logger.debug(f"Metadata created: {key}")

    async def delete(self, key: str):
        """Delete a document; deleting an absent key is a no-op"""
        if not is_valid_key(key):
            return

        try:
            await aiofiles.os.remove(self._path(key))
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Metadata delete failed for {key}: {e}")
            raise StorageError(f"delete failed: {e.strerror or e}", store=STORE_NAME, key=key) from e

        logger.debug(f"Metadata deleted: {key}")
