"""
Structured results for validation failures.

Service operations whose failures are caller mistakes (missing parameter,
unknown space, bad parent reference) return a ``CommonResult`` instead of
raising.  A non-zero ``code`` means failure; ``message`` is the
``ResultMessage`` name and ``detail`` its human-readable text.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ResultMessage(Enum):
    SUCCESS = (0, 200, "Success")
    PARAMS_NOT_NULL = (1001, 400, "A required parameter is missing or empty")
    SPACE_NOT_FOUND = (2001, 404, "Space not found")
    USER_NOT_FOUND = (2002, 404, "User not found")
    ARTICLE_NOT_FOUND = (2003, 404, "Article not found")
    PARENT_NOT_FOUND = (3001, 400, "Parent article not found in this space")
    CYCLIC_HIERARCHY = (3002, 409, "Article hierarchy contains a cycle")

    def __init__(self, code: int, status_code: int, text: str) -> None:
        self.code = code
        self.status_code = status_code
        self.text = text


class CommonResult(BaseModel):
    code: int = 0
    message: str = ResultMessage.SUCCESS.name
    detail: str = ResultMessage.SUCCESS.text
    data: Any = None

    @classmethod
    def success(cls, data: Any = None) -> CommonResult:
        return cls(data=data)

    @classmethod
    def error(cls, message: ResultMessage, detail: str | None = None) -> CommonResult:
        return cls(code=message.code, message=message.name, detail=detail or message.text)

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def status_code(self) -> int:
        return ResultMessage[self.message].status_code


def validate_empty(value: Any, message: ResultMessage) -> CommonResult:
    """
    Return a failure result for ``message`` when *value* is None or an empty
    / whitespace-only string, otherwise a success result.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return CommonResult.error(message)
    return CommonResult.success()


def result_response(result: CommonResult, success_status: int = 200) -> JSONResponse:
    """Render *result* with its failure status, or *success_status* on success."""
    status_code = success_status if result.ok else result.status_code
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))
