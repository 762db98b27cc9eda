"""
app.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口统一应答体（WebSocket 请求使用 ``{ok, error}`` 结构，不走这里）。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from app.core.exceptions import (
    ChatRoomError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

T = TypeVar("T")

# 业务异常 → 业务状态码
_ERROR_CODES: tuple[tuple[type[ChatRoomError], int], ...] = (
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
)


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体::

        {"code": 200, "data": {...}, "msg": "success"}

    Attributes:
        code: 业务状态码，200 表示成功。
        data: 实际业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        """快捷构造成功响应。"""
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """快捷构造失败响应。"""
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def from_error(cls, exc: ChatRoomError) -> ApiResponse[Any]:
        """根据业务异常类型构造失败响应，未归类的异常视为 500。"""
        for error_type, code in _ERROR_CODES:
            if isinstance(exc, error_type):
                return cls.fail(msg=exc.message, code=code)
        return cls.fail(msg=exc.message, code=500)
