"""Domain errors, translated to HTTP responses by ``api_main``."""
from __future__ import annotations

from typing import Any


class ClinicError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.error is not None:
            body["error"] = self.error
        return body


class UnauthorizedError(ClinicError):
    status_code = 401


class NotFoundError(ClinicError):
    status_code = 404


class ConflictError(ClinicError):
    status_code = 409


class ValidationError(ClinicError):
    status_code = 400


class UpstreamFailure(ClinicError):
    """The messaging provider rejected or never answered the request."""
    status_code = 502
