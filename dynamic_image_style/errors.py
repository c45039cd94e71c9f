from __future__ import annotations

"""
Error taxonomy for derivative delivery.

Each error carries the HTTP status the host should answer with and a short
machine-readable code used in JSON error bodies.
"""


class DynamicImageStyleError(Exception):
    status_code: int = 500
    code: str = "dynamic_image_style_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class InvalidToken(DynamicImageStyleError):
    """Malformed settings string or non-positive resolved dimension."""
    status_code = 400
    code = "invalid_settings"


class Forbidden(DynamicImageStyleError):
    """Well-formed settings that the application never issued."""
    status_code = 400
    code = "unregistered_settings"


class NotFound(DynamicImageStyleError):
    """Source file missing locally and not fetchable."""
    status_code = 404
    code = "source_not_found"


class SourceUnreadable(DynamicImageStyleError):
    """Source file exists but cannot be decoded as an image."""
    status_code = 404
    code = "source_unreadable"


class InvalidPlan(DynamicImageStyleError):
    """Plan cannot be applied to this source (e.g. zero-area crop)."""
    status_code = 400
    code = "invalid_plan"


class StorageFailure(DynamicImageStyleError):
    """Derivative could not be written."""
    status_code = 500
    code = "storage_failure"
