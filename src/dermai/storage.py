"""Filesystem storage for uploaded image blobs."""

import logging
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from .errors import PayloadTooLarge, UnsupportedMediaType

logger = logging.getLogger(__name__)

ALLOWED_TYPES = ("jpeg", "jpg", "png", "gif", "bmp")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
CHUNK_SIZE = 64 * 1024


@dataclass
class StoredBlob:
    """An image written to the upload directory."""

    filename: str
    original_filename: str
    path: str
    size: int


def is_allowed_extension(filename: str) -> bool:
    return Path(filename).suffix.lower().lstrip(".") in ALLOWED_TYPES


def is_allowed_mimetype(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    major, _, subtype = content_type.split(";")[0].strip().lower().partition("/")
    return major == "image" and any(kind in subtype for kind in ALLOWED_TYPES)


def generate_filename(original_filename: str) -> str:
    """Return ``<epoch millis>-<random>`` followed by the original extension."""
    unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return unique_suffix + Path(original_filename).suffix.lower()


class BlobStore:
    """Directory of uploaded images named with generated filenames."""

    def __init__(self, directory, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
        self.directory = Path(directory).resolve()
        self.max_bytes = max_bytes

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def validate(self, original_filename: str, content_type: Optional[str]) -> None:
        if not (is_allowed_extension(original_filename) and is_allowed_mimetype(content_type)):
            logger.info(
                "rejected upload %r with content type %r", original_filename, content_type
            )
            raise UnsupportedMediaType()

    def save(
        self, stream: BinaryIO, original_filename: str, content_type: Optional[str]
    ) -> StoredBlob:
        """Validate and write ``stream`` to the upload directory.

        The type check happens before anything touches the disk. Content
        over ``max_bytes`` raises :class:`PayloadTooLarge` and the partial
        file is removed.
        """
        self.validate(original_filename, content_type)
        self.ensure_directory()
        filename = generate_filename(original_filename)
        path = self.directory / filename
        size = 0
        try:
            with open(path, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise PayloadTooLarge()
                    out.write(chunk)
        except PayloadTooLarge:
            path.unlink(missing_ok=True)
            logger.info("rejected upload %r larger than %d bytes", original_filename, self.max_bytes)
            raise
        except OSError:
            path.unlink(missing_ok=True)
            logger.exception("failed writing upload %r", original_filename)
            raise
        logger.info("stored upload %r as %s (%d bytes)", original_filename, filename, size)
        return StoredBlob(
            filename=filename,
            original_filename=original_filename,
            path=str(path),
            size=size,
        )
