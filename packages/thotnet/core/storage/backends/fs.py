"""Filesystem-backed blob store using aiofiles for async I/O.

Writes go to a temp file in the target directory and are moved into place
with os.replace(), so readers never see a partial object.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from tempfile import NamedTemporaryFile

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from thotnet.core.storage.errors import BlobStoreError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_path_component(component: str) -> str:
    """Make a string safe for use as one path component."""
    cleaned = _UNSAFE_CHARS.sub("_", component).strip("._")
    return cleaned or "_"


class FSBlobStore:
    """Blob store rooted at a local directory.

    Locations returned by ``put`` are absolute file paths.

    Args:
        root: Directory holding all objects.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        parts = [sanitize_path_component(p) for p in Path(path).parts if p not in ("", "/", "..")]
        if not parts:
            raise BlobStoreError(f"Invalid object path: {path!r}")
        return self.root.joinpath(*parts)

    def _within_root(self, location: str) -> Path:
        candidate = Path(location).resolve()
        if not candidate.is_relative_to(self.root):
            raise BlobStoreError(f"Location outside store root: {location}")
        return candidate

    async def _write_atomic(self, target: Path, data: bytes) -> None:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        # Temp file in the same directory so the replace stays atomic
        with NamedTemporaryFile(
            dir=target.parent, prefix=".tmp-", suffix=target.suffix, delete=False
        ) as tmp:
            tmp_path = tmp.name

        try:
            async with aiofiles.open(tmp_path, mode="wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, target)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.unlink(tmp_path)
            raise

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            await self._write_atomic(target, data)
        except OSError as e:
            raise BlobStoreError(f"Failed to write {target}: {e}") from e
        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, target)
        return str(target)

    async def get(self, location: str) -> bytes:
        target = self._within_root(location)
        try:
            async with aiofiles.open(target, mode="rb") as f:
                content: bytes = await f.read()
                return content
        except OSError as e:
            raise BlobStoreError(f"Failed to read {location}: {e}") from e

    async def exists(self, location: str) -> bool:
        try:
            target = self._within_root(location)
        except BlobStoreError:
            return False
        return bool(await aiofiles.os.path.isfile(target))
