from __future__ import annotations


class ApiError(Exception):
    def __init__(self, *, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(status_code=422, code=code, message=message)


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(status_code=404, code=code, message=message)


class ConflictError(ApiError):
    def __init__(self, message: str, *, code: str = "CONFLICT") -> None:
        super().__init__(status_code=409, code=code, message=message)


class InvalidTransitionError(ConflictError):
    """Raised when a notification lifecycle transition is not allowed."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move notification from '{current}' to '{target}'",
            code="NOTIFICATION_INVALID_TRANSITION",
        )
        self.current = current
        self.target = target
