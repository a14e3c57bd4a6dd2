"""
Request-level errors rendered as the `{"ok": false, "error": ...}` envelope.
"""

from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """An error with an HTTP status and a user-facing message."""

    def __init__(self, status_code: int, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra

    def as_body(self) -> dict:
        return {"ok": False, "error": self.message, **self.extra}
