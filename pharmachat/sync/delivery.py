import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pharmachat.core.exceptions import ComposerBusyError, DeliveryError, ValidationError
from pharmachat.models.message import SENDER_PHARMACY_OWNER
from pharmachat.services.storage_service import validate_image


logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024


@dataclass
class ImageAttachment:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class Composer:
    """
    Outgoing-message pipeline for one composer instance.

    Holds the draft (text, attachment, preview) and the ``sending``/``uploading``
    busy flags. Only one send may be in flight; a second call while busy raises
    ``ComposerBusyError`` without touching the store.
    """

    def __init__(self, writer, uploader, max_image_bytes: int = MAX_IMAGE_BYTES, sender_type: str = SENDER_PHARMACY_OWNER) -> None:
        self._writer = writer
        self._uploader = uploader
        self._max_image_bytes = max_image_bytes
        self._sender_type = sender_type
        self.text = ""
        self.attachment: Optional[ImageAttachment] = None
        self.preview: Optional[str] = None
        self.sending = False
        self.uploading = False
        self.last_error: Optional[DeliveryError] = None

    @property
    def busy(self) -> bool:
        return self.sending or self.uploading

    @property
    def state(self) -> str:
        if self.uploading:
            return "uploading"
        if self.sending:
            return "sending"
        return "composing"

    def attach(self, image: ImageAttachment) -> None:
        validate_image(image.content_type, image.size, self._max_image_bytes)
        self.attachment = image
        self.preview = image.to_data_url()

    def remove_attachment(self) -> None:
        self.attachment = None
        self.preview = None

    def clear(self) -> None:
        self.text = ""
        self.remove_attachment()

    async def send(
        self,
        conversation_id: Optional[str],
        sender_id: str,
        sender_name: str,
        text: Optional[str] = None,
        image: Optional[ImageAttachment] = None,
    ) -> Dict[str, Any]:
        """
        Send the given text/image, or the current draft when they are omitted.

        Upload happens before the message record is created, so a failed upload
        never leaves a message pointing at a missing image. On success the draft is
        cleared; on failure it is kept and a ``DeliveryError`` is raised.
        """
        if self.sending:
            raise ComposerBusyError("A message is already being sent")
        if text is None:
            text = self.text
        if image is None:
            image = self.attachment

        body = (text or "").strip()
        if not body and image is None:
            raise ValidationError("Message is empty")
        if not conversation_id:
            raise ValidationError("Please select a conversation")
        if image is not None:
            validate_image(image.content_type, image.size, self._max_image_bytes)

        self.sending = True
        self.last_error = None
        try:
            image_url = None
            if image is not None:
                image_url = await self._upload(image)
            try:
                message = await self._writer.create_message(
                    conversation_id,
                    sender_id,
                    self._sender_type,
                    sender_name,
                    content=body,
                    image_url=image_url,
                )
            except DeliveryError:
                raise
            except Exception as exc:
                raise DeliveryError(DeliveryError.CREATE, cause=exc) from exc
        except DeliveryError as exc:
            self.last_error = exc
            logger.error("Send to %s failed at %s stage: %s", conversation_id, exc.stage, exc.cause)
            raise
        finally:
            self.sending = False

        self.clear()
        return message

    async def _upload(self, image: ImageAttachment) -> str:
        self.uploading = True
        try:
            return await self._uploader.upload_image(image.data, image.content_type, image.filename)
        except Exception as exc:
            raise DeliveryError(DeliveryError.UPLOAD, cause=exc) from exc
        finally:
            self.uploading = False
