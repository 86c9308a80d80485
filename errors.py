# errors.py
"""
Domain errors raised by the lease and payment services.

Each error carries a stable code and the HTTP status the API layer answers
with, so callers can tell "already occupied" apart from "not found".
"""
from typing import Any, Dict

from fastapi import status


class AppError(Exception):
     """Base application error."""

     code = "app_error"
     http_status = status.HTTP_400_BAD_REQUEST

     def __init__(self, message: str):
          self.message = message
          super().__init__(message)


class ValidationError(AppError):
     """Malformed input, rejected before any transaction starts."""

     code = "validation_error"
     http_status = 422


class PermissionDeniedError(AppError):
     code = "permission_denied"
     http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
     code = "not_found"
     http_status = status.HTTP_404_NOT_FOUND


class InvalidStateError(AppError):
     """The record exists but is not in a state that allows the operation."""

     code = "invalid_state"
     http_status = status.HTTP_409_CONFLICT


class ConflictError(AppError):
     """A concurrent writer won the race for the same unit."""

     code = "conflict"
     http_status = status.HTTP_409_CONFLICT


class UpstreamUnavailableError(AppError):
     """The payment gateway could not be reached or refused the request. Retryable."""

     code = "upstream_unavailable"
     http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class AuthenticityError(AppError):
     """Webhook signature did not verify. Logged, never returned to the gateway."""

     code = "authenticity_failure"
     http_status = status.HTTP_401_UNAUTHORIZED


def error_response(error: AppError) -> Dict[str, Any]:
     """Standard error body."""
     return {
          "success": False,
          "error": {
               "code": error.code,
               "message": error.message,
          },
     }
