import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .utils import clean_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    filename: str


class ObjectStorage(Protocol):
    """Where attachment bytes live; tasks only keep the key and URL"""

    async def save(self, data: bytes, original_name: str, mime_type: str) -> StoredObject:
        ...

    async def delete(self, key: str) -> None:
        ...

    def url_for(self, key: str) -> str:
        ...

    def local_path(self, key: str) -> Optional[Path]:
        """Filesystem path of a stored object, or None for remote backends"""
        ...


class LocalObjectStorage:
    """Stores objects on disk below ``root`` and serves them under ``base_url``"""

    def __init__(self, root: Path, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes the upload root: {key}")
        return path

    async def save(self, data: bytes, original_name: str, mime_type: str) -> StoredObject:
        suffix = Path(clean_filename(original_name)).suffix.lower()
        filename = f"task-doc-{uuid.uuid4().hex}{suffix}"
        key = f"task-management/{filename}"
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        logger.info("Stored %s (%d bytes, %s) as %s", original_name, len(data), mime_type, key)
        return StoredObject(key=key, url=self.url_for(key), filename=filename)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            await asyncio.to_thread(path.unlink)
            logger.info("Deleted stored object %s", key)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def local_path(self, key: str) -> Optional[Path]:
        return self._path(key)
