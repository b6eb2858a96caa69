from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Not allowed"):
        super().__init__(status_code=403, detail=detail)


class InvalidInputError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class InvalidStateError(HTTPException):
    def __init__(self, message: str, *, current_status: str | None):
        self.current_status = current_status
        detail: dict[str, Any] = {"message": message, "current_status": current_status}
        super().__init__(status_code=400, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=409, detail=detail)


class UpstreamError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=502, detail=detail)
