from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors.

    ``message`` is a short machine-readable code (e.g. ``NO_ACTIVE_SESSION``)
    returned to clients as ``{"ok": false, "error": message}``.
    """

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StorageError(ServiceError):
    """Raised by the file storage layer (missing object, duplicate path, bad token)."""
