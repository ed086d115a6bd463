from __future__ import annotations

from typing import Any


class RentalError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_payload(self) -> dict:
        return {"detail": self.message, "context": self.context}


class ValidationError(RentalError):
    status_code = 400


class InvalidIntervalError(ValidationError):
    pass


class NotFoundError(RentalError):
    status_code = 404


class ConflictError(RentalError):
    status_code = 409


class AlreadyCompletedError(ConflictError):
    pass


class ForbiddenError(RentalError):
    status_code = 403


class InvalidTransitionError(RentalError):
    status_code = 400


class PricingUnavailableError(RentalError):
    status_code = 400


class UpstreamError(RentalError):
    status_code = 502
