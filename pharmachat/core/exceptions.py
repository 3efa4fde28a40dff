from typing import Optional


class ChatError(Exception):

    def __init__(self, message: str = "Chat error") -> None:
        self.message = message
        super().__init__(message)


class ValidationError(ChatError):
    """Empty payload or no selected conversation. Raised before any store call."""


class UnsupportedMediaError(ChatError):
    pass


class PayloadTooLargeError(ChatError):
    pass


class NotFoundError(ChatError):
    pass


class ComposerBusyError(ChatError):
    """A send is already in flight on this composer."""


class SubscriptionError(ChatError):

    PERMISSION_DENIED = "permission-denied"
    PRECONDITION_FAILED = "precondition-failed"
    UNKNOWN = "unknown"

    def __init__(self, code: str, message: str = "Subscription failed") -> None:
        self.code = code
        super().__init__(message)


class DeliveryError(ChatError):

    UPLOAD = "upload"
    CREATE = "create"

    def __init__(self, stage: str, message: str = "Failed to send message. Please try again.", cause: Optional[BaseException] = None) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(message)


class ReadMarkError(ChatError):
    pass
