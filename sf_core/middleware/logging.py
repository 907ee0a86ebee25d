"""
请求日志中间件

记录所有入站 API 请求：
- 请求地址、方法、查询参数
- 响应状态码、耗时
请求和响应体包含客户地址等信息，不记录。
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sf_core.utils.logger import get_logger, LogContext


# 不记录详细日志的路径
SKIP_DETAIL_PATHS = {
    "/healthz",
    "/favicon.ico",
}

SENSITIVE_FIELDS = {"password", "api_key", "apikey", "secret", "token", "authorization"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件"""

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.logging")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        method = request.method
        path = request.url.path
        skip_detail = path in SKIP_DETAIL_PATHS
        start_time = time.perf_counter()

        with LogContext(trace_id=trace_id):
            if not skip_detail:
                log_data = {
                    "direction": "inbound",
                    "method": method,
                    "path": path,
                    "client_ip": self._get_client_ip(request),
                }
                if request.query_params:
                    log_data["query_params"] = self._mask_sensitive(dict(request.query_params))
                self.logger.info("API request", **log_data)

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "API request failed",
                    direction="inbound",
                    method=method,
                    path=path,
                    latency_ms=int((time.perf_counter() - start_time) * 1000),
                    result="error",
                    err=str(e),
                    exc_info=True
                )
                raise

            if not skip_detail:
                resp_log_data = {
                    "direction": "inbound",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "latency_ms": int((time.perf_counter() - start_time) * 1000),
                    "result": "success" if response.status_code < 400 else "error",
                }
                if response.status_code >= 400:
                    self.logger.warning("API response error", **resp_log_data)
                else:
                    self.logger.info("API response", **resp_log_data)

            response.headers["X-Trace-Id"] = trace_id
            return response

    def _mask_sensitive(self, data: dict) -> dict:
        return {
            key: "***MASKED***" if key.lower() in SENSITIVE_FIELDS else value
            for key, value in data.items()
        }

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
