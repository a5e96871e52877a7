"""
Local-disk storage for uploaded article images.

Files are addressed by a relative path string (``articles/<name>.jpg``)
which is what gets persisted on the article row.  The same directory is
served by the application under ``MEDIA_URL``.
"""
import logging
from pathlib import Path

from app.config import settings

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, root: str | Path, base_url: str = "/storage") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def path(self, relative: str) -> Path:
        """Absolute filesystem path for *relative*; refuses to escape the root."""
        full = (self.root / relative).resolve()
        if not full.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes storage root: {relative!r}")
        return full

    def put(self, relative: str, data: bytes) -> str:
        full = self.path(relative)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        return relative

    def exists(self, relative: str) -> bool:
        return self.path(relative).is_file()

    def delete(self, *paths: str) -> int:
        """Remove each of *paths* that exists; returns the number removed."""
        removed = 0
        for relative in paths:
            full = self.path(relative)
            if full.is_file():
                full.unlink()
                removed += 1
        if removed:
            logger.debug("Storage removed %d file(s)", removed)
        return removed

    def url(self, relative: str | None) -> str | None:
        if not relative:
            return None
        return f"{self.base_url}/{relative}"


storage = LocalStorage(settings.MEDIA_ROOT, settings.MEDIA_URL)


def get_storage() -> LocalStorage:
    return storage
