"""
Business-rule errors raised by the data layer.

Each carries the HTTP status it is reported with; the app's exception handlers turn
them into the failure envelope.
"""


class HttpError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(HttpError):
    status_code = 400


class Unauthorized(HttpError):
    status_code = 401


class Forbidden(HttpError):
    status_code = 403


class NotFound(HttpError):
    status_code = 404


class Conflict(HttpError):
    status_code = 409


class InvalidTransition(BadRequest):
    """
    Raised when an order is asked to move to a status its current status
    does not allow.
    """

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot change status from '{current}' to '{target}'")
        self.current = current
        self.target = target
