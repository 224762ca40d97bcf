"""HTTP error taxonomy shared by services and routers.

Every error is an ``HTTPException`` so services can raise them directly and
FastAPI renders them without extra handlers. Backing-store failures that
escape a service are mapped to ``Internal`` in ``chatapi.main``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class ValidationFailed(HTTPException):
    def __init__(self, field: str, message: str, location: str = "body"):
        super().__init__(422, [{"loc": [location, field], "msg": message, "type": "value_error"}])
        self.field = field


class Conflict(HTTPException):
    def __init__(self, detail: str = "Already exists"):
        super().__init__(409, detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(404, detail)


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(401, detail, headers={"WWW-Authenticate": "Bearer"})


class RateLimited(HTTPException):
    def __init__(self, detail: str = "Too many attempts", retry_after: Optional[int] = None):
        headers = {"Retry-After": str(int(retry_after))} if retry_after else None
        super().__init__(429, detail, headers=headers)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(403, detail)


class Internal(HTTPException):
    def __init__(self, detail: str = "Backing store failure"):
        super().__init__(500, detail)


def is_conditional_failure(exc: Exception) -> bool:
    response = getattr(exc, "response", None) or {}
    return response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"
