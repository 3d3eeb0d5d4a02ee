"""Application error taxonomy.

Every error the core raises towards a caller is an ``ApplicationError`` tagged
with an ``ErrorKind``. The HTTP layer matches on the kind to pick a status
code; nothing else in the backend needs to know about HTTP.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
}


class ApplicationError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ValidationError(ApplicationError):
    kind = ErrorKind.VALIDATION


class NotFoundError(ApplicationError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(ApplicationError):
    kind = ErrorKind.CONFLICT


class ForbiddenError(ApplicationError):
    kind = ErrorKind.FORBIDDEN
