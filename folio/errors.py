"""
Error taxonomy shared by the store, auth and media layers.

Each error carries the HTTP status the route layer answers with; the app
turns any ``FolioError`` into a ``{"message": ...}`` JSON body.
"""

from __future__ import annotations


class FolioError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FolioError):
    """Malformed or missing input."""

    status_code = 400


class PasswordMismatchError(ValidationError):
    status_code = 422

    def __init__(self, message: str = "Passwords do not match"):
        super().__init__(message)


class AuthError(FolioError):
    """Bad credentials or a missing, invalid or expired token."""

    status_code = 401


class ConflictError(FolioError):
    status_code = 422


class NotFoundError(FolioError):
    """Missing record. Also raised for ownership mismatches so the two look alike."""

    status_code = 404


class UpstreamError(FolioError):
    """The database or the asset host failed."""

    status_code = 500
