"""
Image service — resized JPEG/WebP variants for article uploads.

``ImageOptimizer.optimize`` is synchronous and CPU-bound; routers call it
through ``starlette.concurrency.run_in_threadpool`` so the event loop keeps
serving other requests while a single upload is processed.

The size limit is enforced by ``ensure_upload_size`` before any bytes are
decoded, so an oversized upload is always reported as 413 even when it is
not a valid image.
"""
import io
import logging
import secrets
from pathlib import PurePosixPath

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from app.config import settings
from app.exceptions import ImageProcessingError, PayloadTooLargeError, ValidationFailed
from app.storage import LocalStorage

logger = logging.getLogger(__name__)

# label -> target width in pixels
VARIANT_WIDTHS: dict[str, int] = {
    "thumbnail": 300,
    "medium": 800,
    "large": 1200,
}

ALLOWED_EXTENSIONS = frozenset({"jpeg", "jpg", "png", "gif", "webp"})
ALLOWED_FORMATS = frozenset({"JPEG", "PNG", "GIF", "WEBP"})

STORAGE_DIR = "articles"


def upload_size(upload: UploadFile) -> int:
    """Size of *upload* in bytes without reading it into memory."""
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, io.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def ensure_upload_size(size: int, limit: int | None = None) -> None:
    limit = settings.MAX_UPLOAD_BYTES if limit is None else limit
    if size > limit:
        raise PayloadTooLargeError(size, limit)


async def read_upload(upload: UploadFile) -> tuple[bytes, str | None]:
    """Check the size limit, then read the whole upload into memory."""
    ensure_upload_size(upload_size(upload))
    return await upload.read(), upload.filename


def original_extension(filename: str | None) -> str:
    return PurePosixPath(filename or "").suffix.lstrip(".").lower() or "jpg"


def _fit_width(image: Image.Image, width: int) -> Image.Image:
    """Scale *image* down to *width*, keeping aspect ratio; never upscales."""
    if image.width <= width:
        return image.copy()
    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), Image.Resampling.LANCZOS)


def _too_many_pixels(limit: int) -> str:
    return f"The image may not be larger than {limit:,} pixels."


def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    if fmt == "JPEG":
        # JPEG has no alpha channel or palette.
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if "A" in image.getbands() or "transparency" in image.info else "RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, quality=quality)
    return buffer.getvalue()


class ImageOptimizer:
    """
    Produce the thumbnail/medium/large variants of an uploaded image in
    JPEG and WebP, plus an untouched copy of the original.

    The result maps ``thumbnail``, ``thumbnail_webp``, ``medium``,
    ``medium_webp``, ``large``, ``large_webp`` and ``original`` to storage
    paths.  A failure while encoding or storing any variant removes the
    files already written for this call and raises ``ImageProcessingError``.
    """

    def __init__(
        self,
        storage: LocalStorage,
        quality: int | None = None,
        max_pixels: int | None = None,
    ) -> None:
        self.storage = storage
        self.quality = quality or settings.IMAGE_QUALITY
        self.max_pixels = max_pixels or settings.MAX_IMAGE_PIXELS

    def optimize(self, data: bytes, filename: str | None = None) -> dict[str, str]:
        ensure_upload_size(len(data))
        extension = original_extension(filename)
        source = self._open(data, extension)

        base_name = secrets.token_hex(20)
        written: dict[str, str] = {}
        try:
            for label, width in VARIANT_WIDTHS.items():
                resized = _fit_width(source, width)
                written[label] = self._store(
                    f"{STORAGE_DIR}/{base_name}_{label}.jpg", _encode(resized, "JPEG", self.quality)
                )
                written[f"{label}_webp"] = self._store(
                    f"{STORAGE_DIR}/{base_name}_{label}.webp", _encode(resized, "WEBP", self.quality)
                )
            written["original"] = self._store(f"{STORAGE_DIR}/{base_name}_orig.{extension}", data)
        except Exception as exc:
            logger.exception("Image variant generation failed for %s", base_name)
            self.storage.delete(*written.values())
            raise ImageProcessingError(str(exc)) from exc

        logger.info(
            "Generated %d image files for %s (source %dx%d)",
            len(written), base_name, source.width, source.height,
        )
        return written

    def _open(self, data: bytes, extension: str) -> Image.Image:
        if extension not in ALLOWED_EXTENSIONS:
            raise ValidationFailed(
                {"image": [f"The image must be a file of type: {', '.join(sorted(ALLOWED_EXTENSIONS))}."]}
            )
        try:
            image = Image.open(io.BytesIO(data))
        except Image.DecompressionBombError as exc:
            raise ValidationFailed({"image": [_too_many_pixels(self.max_pixels)]}) from exc
        except (UnidentifiedImageError, OSError) as exc:
            raise ValidationFailed({"image": ["The image must be an image."]}) from exc

        # Dimensions come from the header; refuse before any pixel data is decoded.
        if image.width * image.height > self.max_pixels:
            raise ValidationFailed({"image": [_too_many_pixels(self.max_pixels)]})
        try:
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ValidationFailed({"image": ["The image must be an image."]}) from exc
        if image.format not in ALLOWED_FORMATS:
            raise ValidationFailed({"image": [f"Unsupported image format: {image.format}."]})
        return image

    def _store(self, path: str, payload: bytes) -> str:
        return self.storage.put(path, payload)
