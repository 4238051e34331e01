"""Durable copies of downloaded product files."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from catalog_pipeline.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")


class FileArchive(ABC):
    """Stores raw file bytes and returns the archive path."""

    @abstractmethod
    async def store(self, product_id: int, file_name: str, data: bytes) -> str: ...


class LocalFileArchive(FileArchive):
    """Archive under ``{base_dir}/{product_id}/{file_name}``. Existing files are overwritten."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.file_archive_dir)

    @staticmethod
    def safe_name(file_name: str) -> str:
        name = _UNSAFE_CHARS.sub("_", Path(file_name).name).strip()
        return name or "file.pdf"

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def store(self, product_id: int, file_name: str, data: bytes) -> str:
        relative = Path(str(product_id)) / self.safe_name(file_name)
        await asyncio.to_thread(self._write, self.base_dir / relative, data)
        return relative.as_posix()
