"""
Error taxonomy shared by every layer of the service.

Operational errors carry the status code and a message that is safe to show
to the client. Anything else reaching the app-level handler is logged with
full detail and reported as a generic 500.
"""
from dataclasses import asdict, dataclass
from typing import List, Optional

from fastapi import status


@dataclass(frozen=True)
class FieldError:
    field: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


class ApiError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong!"

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None,
                 is_operational: bool = True):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.is_operational = is_operational
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


class ValidationFailed(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input data."

    def __init__(self, message: Optional[str] = None, errors: Optional[List[FieldError]] = None):
        self.errors = list(errors or [])
        if message is None and self.errors:
            message = self.errors[0].message
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.errors:
            body["errors"] = [error.to_dict() for error in self.errors]
        return body


class Unauthenticated(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "You are not logged in. Please log in to access this resource."


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have permission to perform this action."


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Resource already exists"


class RateLimited(ApiError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, please try again later."


class Unexpected(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# Auth state machine failures

class DuplicateEmail(Conflict):
    default_message = "User with this email already exists"


class InvalidCredentials(Unauthenticated):
    default_message = "Invalid email or password"


class InvalidOrExpiredToken(ValidationFailed):
    default_message = "Invalid or expired token"


class AlreadyVerified(ValidationFailed):
    default_message = "Email is already verified"


class IncorrectCurrentPassword(Unauthenticated):
    default_message = "Current password is incorrect"


class UserGone(Unauthenticated):
    default_message = "The user belonging to this token no longer exists."


class AccountDeactivated(Unauthenticated):
    default_message = "Your account has been deactivated. Please contact support."


class StaleToken(Unauthenticated):
    default_message = "User recently changed password. Please log in again."


class QueryParamError(ValidationFailed):
    default_message = "Invalid query parameters"
