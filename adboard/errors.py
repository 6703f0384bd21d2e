"""
Error taxonomy for the ad board.

Every error carries a user-facing message and the HTTP status the request
boundary answers with. Handlers in main.py render them as HTML pages.
"""


class AdBoardError(Exception):
    """Base class for errors surfaced to the user."""

    status_code = 500
    title = "Error"
    result = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadError(AdBoardError):
    """Uploaded file has the wrong type or is too large."""

    status_code = 400
    title = "Upload Error"
    result = "upload_error"


class ValidationError(AdBoardError):
    """A form field is missing or malformed."""

    status_code = 400
    title = "Invalid input"
    result = "validation_error"


class QuotaExceededError(AdBoardError):
    """The phone number already has the maximum number of ads."""

    status_code = 409
    title = "Limit reached"
    result = "quota_exceeded"

    def __init__(self, limit: int):
        super().__init__(f"Only {limit} ads allowed per phone number.")
        self.limit = limit


class BadRequestError(AdBoardError):
    """A required query parameter is missing."""

    status_code = 400
    title = "Bad request"
    result = "bad_request"


class StorageError(AdBoardError):
    """The ad repository failed."""

    status_code = 500
    title = "Internal error"
    result = "storage_error"


class AssetStoreError(StorageError):
    """The asset host failed to store an image."""

    status_code = 502
