class StorageError(Exception):
    """
    Base class for every error raised by the storage core.

    Each subclass carries the HTTP status and machine-readable code the API
    layer reports, so route handlers never translate errors themselves.
    """
    status_code = 500
    code = "INTERNAL_ERROR"
    error = "Internal server error"

    def __init__(self, message: str | None = None, code: str | None = None):
        super().__init__(message or self.error)
        if code is not None:
            self.code = code


class InvalidKey(StorageError):
    """Client-supplied key failed path safety validation"""
    status_code = 400
    code = "INVALID_KEY"
    error = "Invalid key"


class NotFound(StorageError):
    status_code = 404
    code = "NOT_FOUND"
    error = "File not found"


class FileMissing(NotFound):
    """Index entry exists but its blob is gone from disk"""
    code = "FILE_MISSING"


class InvalidRequest(StorageError):
    status_code = 400
    code = "INVALID_REQUEST"
    error = "Incorrect request"


class PayloadTooLarge(InvalidRequest):
    status_code = 413
    code = "FILE_TOO_LARGE"
    error = "File too large"


class Conflict(StorageError):
    status_code = 409
    code = "CONFLICT"
    error = "Resource already exists"


class StorageFault(StorageError):
    """
    Filesystem or metadata store failure unrelated to input validity.

    The message is kept for logs; clients only ever see the opaque error.
    """
    status_code = 500
    code = "STORAGE_FAULT"
    error = "Internal server error"
