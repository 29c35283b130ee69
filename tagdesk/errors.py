"""
Domain errors raised below the route layer.

Routes raise ``HTTPException`` directly; these are mapped to responses by
``tagdesk.exception_handlers``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tagdesk.storage import StorageError


class InvalidRequestError(ValueError):
    """Raised when a request is well-formed but violates a project rule."""


class StorageOperationError(RuntimeError):
    """Raised when a failed storage result has to abort the request."""

    def __init__(self, error: "StorageError"):
        super().__init__(f"{error.code.value}: {error.message} ({error.path})")
        self.error = error
