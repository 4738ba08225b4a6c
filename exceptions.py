"""Application error hierarchy.

Services raise these; ``main`` turns them into JSON responses carrying the
status code attached to each class.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class PaymentRequiredError(AppError):
    status_code = 402


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class ConflictError(AppError):
    status_code = 409


class UpstreamError(AppError):
    """An external provider (World ID, AI API) failed or rejected the call."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.code = code
