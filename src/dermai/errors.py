"""Error taxonomy shared by the store, the blob store and the API layer.

Every error carries the HTTP status it maps to and a human readable
message that is returned to the caller as ``{"error": message}``.
"""


class DermaiError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DermaiError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(DermaiError):
    status_code = 401
    default_message = "Invalid email or password"


class ConstraintViolation(DermaiError):
    status_code = 409
    default_message = "Username or email already exists"


class PayloadTooLarge(DermaiError):
    status_code = 413
    default_message = "File too large"


class UnsupportedMediaType(DermaiError):
    status_code = 415
    default_message = "Only image files are allowed!"


class StoreError(DermaiError):
    status_code = 500
    default_message = "Database error"
