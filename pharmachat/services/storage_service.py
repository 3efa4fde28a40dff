import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional

from pharmachat.core.exceptions import PayloadTooLargeError, UnsupportedMediaError


logger = logging.getLogger(__name__)

IMAGE_FOLDER = "chat-images"


def validate_image(content_type: Optional[str], size: int, max_bytes: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise UnsupportedMediaError("Please select an image file")
    if size > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise PayloadTooLargeError(f"Image size must be less than {max_mb:.0f}MB")


class StorageService:
    """Stores uploaded chat images on local disk; they are served under ``/uploads``."""

    def __init__(self, upload_dir: str, api_base_url: str) -> None:
        self.upload_dir = Path(upload_dir)
        self.api_base_url = api_base_url.rstrip("/")

    def _generate_filename(self, content_type: str, filename: Optional[str]) -> str:
        ext = Path(filename).suffix.lower() if filename else ""
        if not ext:
            ext = mimetypes.guess_extension(content_type) or ""
        return f"{uuid.uuid4().hex[:12]}{ext}"

    async def upload_image(self, content: bytes, content_type: str, filename: Optional[str] = None) -> str:
        object_key = f"{IMAGE_FOLDER}/{self._generate_filename(content_type, filename)}"
        try:
            file_path = self.upload_dir / object_key
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(content)
        except OSError as e:
            logger.error("Failed to store image %s: %s", object_key, e)
            raise RuntimeError(f"Failed to store image: {e}") from e
        logger.info("Stored image %s (%d bytes)", object_key, len(content))
        return f"{self.api_base_url}/uploads/{object_key}"
