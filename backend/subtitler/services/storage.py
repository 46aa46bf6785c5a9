"""Blob storage for uploaded media and produced subtitle files."""

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath

from subtitler.config import settings
from subtitler.errors import PersistFailed, SourceNotFound

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = "/api/v1/files/"


def _safe_join(root: Path, relative: str) -> Path:
    """Join ``relative`` under ``root``, refusing anything that escapes it."""
    candidate = (root / relative).resolve()
    if not candidate.is_relative_to(root.resolve()):
        raise ValueError(f"Path escapes storage root: {relative}")
    return candidate


class LocalInputStore:
    """Uploaded source files kept on local disk."""

    def __init__(self, root: str):
        self.root = Path(root)

    async def save(self, data: bytes, file_name: str, owner_id: str) -> str:
        """
        Store upload bytes under the owner's directory.

        Returns:
            Location reference of the form /api/v1/files/<owner>/<uuid><ext>
        """
        extension = PurePosixPath(file_name).suffix.lower()
        relative = f"{owner_id}/{uuid.uuid4()}{extension}"
        path = _safe_join(self.root, relative)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)

        logger.info(f"Saved upload {file_name} ({len(data)} bytes) as {relative}")
        return UPLOAD_URL_PREFIX + relative

    def resolve(self, location: str) -> Path:
        """
        Map a location reference to a readable file.

        Raises:
            SourceNotFound: location is invalid or the file is gone
        """
        relative = location[len(UPLOAD_URL_PREFIX):] if location.startswith(UPLOAD_URL_PREFIX) else location
        try:
            path = _safe_join(self.root, relative.lstrip("/"))
        except ValueError as e:
            raise SourceNotFound(str(e)) from e

        if not path.is_file():
            raise SourceNotFound(f"Input file not found at path: {path}")
        return path

    async def delete(self, location: str) -> bool:
        try:
            path = self.resolve(location)
        except SourceNotFound:
            return False
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info(f"Deleted upload {path}")
        return True


class LocalOutputStore:
    """Produced subtitle files, served back under a public URL prefix."""

    def __init__(self, root: str, public_url: str):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    async def put(self, data: bytes, key: str, content_type: str = "text/plain") -> str:
        """
        Persist bytes under ``key``.

        Returns:
            Publicly retrievable location of the stored object

        Raises:
            PersistFailed: the object could not be written
        """
        try:
            path = _safe_join(self.root, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, data)
        except (OSError, ValueError) as e:
            raise PersistFailed(f"Failed to store {key}: {e}") from e

        logger.info(f"Stored {key} ({len(data)} bytes, {content_type})")
        return f"{self.public_url}/{key}"

    def key_for(self, location: str) -> str:
        prefix = self.public_url + "/"
        return location[len(prefix):] if location.startswith(prefix) else location

    async def get(self, location: str) -> bytes:
        """Read back a stored object by its location or key."""
        path = _safe_join(self.root, self.key_for(location))
        return await asyncio.to_thread(path.read_bytes)


# Global storage instances
input_store = LocalInputStore(settings.UPLOAD_DIR)
output_store = LocalOutputStore(settings.OUTPUT_DIR, settings.OUTPUT_PUBLIC_URL)
