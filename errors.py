class ChatError(Exception):
    """Base for every failure that is reported back to the caller.

    The gateway turns these into ``{"ok": False, "message": ...}``
    acknowledgments and the HTTP layer into ``{"detail": ...}`` responses.
    """

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(ChatError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(ChatError):
    status_code = 404
    default_message = "Not found"


class InvalidId(NotFound):
    default_message = "Invalid message id"


class Forbidden(ChatError):
    status_code = 403
    default_message = "Not allowed"


class EmptyMessage(ChatError):
    default_message = "Message is empty"


class InvalidImage(ChatError):
    default_message = "Invalid image format"


class TooLarge(ChatError):
    status_code = 413
    default_message = "Image is too large"


class TooLong(ChatError):
    default_message = "Message is too long"


class InvalidKind(ChatError):
    default_message = "Invalid message kind"
