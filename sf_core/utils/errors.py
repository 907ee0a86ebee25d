"""
Storefront 错误处理系统
所有业务异常统一转换为 {"message", "code", ...} 响应体
"""
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class StorefrontException(Exception):
    """Storefront 基础异常类"""

    def __init__(
        self,
        status: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or title)

    @property
    def message(self) -> str:
        return self.detail or self.title

    def to_dict(self) -> Dict[str, Any]:
        """转换为响应体"""
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        return JSONResponse(status_code=self.status, content=self.to_dict())


class NotFoundError(StorefrontException):
    """404 未找到"""
    def __init__(self, code: str, resource: str):
        super().__init__(
            status=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found"
        )


class ValidationError(StorefrontException):
    """422 验证失败"""
    def __init__(
        self,
        code: str,
        detail: str,
        errors: Optional[Dict[str, List[str]]] = None,
        **kwargs
    ):
        super().__init__(
            status=422,
            code=code,
            title="Validation Failed",
            detail=detail,
            errors=errors,
            **kwargs
        )


class SizeRequiredError(ValidationError):
    """商品按尺码管理库存，但未提供尺码"""
    def __init__(self, available_sizes: List[str]):
        super().__init__(
            code="SIZE_REQUIRED",
            detail="Product size is required for this product",
            errors={"product_size": ["size required"]},
            available_sizes=available_sizes,
        )


class SizeUnavailableError(StorefrontException):
    """请求的尺码不存在（按 422 返回，附带可选尺码）"""
    def __init__(self, requested_size: str, available_sizes: List[str]):
        super().__init__(
            status=422,
            code="SIZE_UNAVAILABLE",
            title="Size Unavailable",
            detail="Selected size is not available",
            requested_size=requested_size,
            available_sizes=available_sizes,
        )
        self.requested_size = requested_size
        self.available_sizes = available_sizes


class InsufficientStockError(StorefrontException):
    """库存不足"""
    def __init__(self, available: int, requested: int, size: Optional[str] = None):
        if size is not None:
            detail = f"Insufficient stock for size {size}. Only {available} available."
        else:
            detail = f"Insufficient stock. Only {available} available."
        super().__init__(
            status=422,
            code="INSUFFICIENT_STOCK",
            title="Insufficient Stock",
            detail=detail,
            requested_size=size,
            requested=requested,
            available=available,
        )
        self.available = available
        self.requested = requested
        self.size = size


class NotificationError(StorefrontException):
    """通知发送失败（只记录日志，不会返回给调用方）"""
    def __init__(self, code: str = "NOTIFICATION_FAILED", detail: str = "Notification delivery failed"):
        super().__init__(
            status=502,
            code=code,
            title="Notification Failed",
            detail=detail
        )


class InternalServerError(StorefrontException):
    """500 内部错误"""
    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred"):
        super().__init__(
            status=500,
            code=code,
            title="Internal Server Error",
            detail=detail
        )
