"""
Error taxonomy shared by the stores, the service and the HTTP layer.

Each error maps to exactly one HTTP status in main.py:
- ValidationError -> 400
- Unauthorized    -> 401
- NotFound        -> 404
- StorageError    -> 500
"""


class ProximityError(Exception):
    """Base class for all geonotes errors."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ProximityError, ValueError):
    """Malformed or missing input."""

    status_code = 400


class Unauthorized(ProximityError):
    """Authenticated, but not allowed to touch the resource."""

    status_code = 401


class NotFound(ProximityError):
    """No message with the given id."""

    status_code = 404


class StorageError(ProximityError):
    """The storage backend was unreachable or rejected the operation."""

    status_code = 500
