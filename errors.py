from typing import Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        errors: Optional[list] = None,
    ) -> None:
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized request"


class InvalidToken(Unauthorized):
    default_message = "Invalid token"


class ExpiredToken(Unauthorized):
    default_message = "Token has expired"


class InvalidCredentials(ApiError):
    status_code = 401
    default_message = "Invalid user credentials"


class DuplicateEmail(ApiError):
    status_code = 409
    default_message = "User with this email already exists"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class InternalError(ApiError):
    status_code = 500
