"""
Storefront FastAPI 主应用
"""
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from sf_core import __version__
from sf_core.config import Settings, get_settings
from sf_core.utils.logger import setup_logging, get_logger
from sf_core.utils.errors import StorefrontException
from sf_core.utils.clock import SystemClock
from sf_core.utils.redis import get_redis, check_redis, close_redis
from sf_core.database import get_db_manager
from sf_core.middleware.logging import LoggingMiddleware
from sf_core.services import (
    OrderService, InMemoryMarkerStore, RedisMarkerStore,
    build_order_service, create_dispatcher,
)
from sf_core.tasks import ArqTaskQueue, LocalTaskQueue, TASK_FUNCTIONS
from sf_core.api import api_router

logger = get_logger(__name__)


def install_services(app: FastAPI, order_service: OrderService) -> None:
    """把服务实例挂到 app.state，供路由依赖注入使用"""
    app.state.order_service = order_service
    app.state.catalog_reader = order_service.catalog


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings: Settings = app.state.settings

    logger.info("Starting Storefront application", version=__version__)

    db_manager = get_db_manager()
    if not await db_manager.check_connection():
        raise RuntimeError("Database connection failed")

    dispatcher = create_dispatcher(settings)
    clock = SystemClock()

    if settings.redis_enabled:
        if not await check_redis(settings):
            raise RuntimeError("Redis connection failed")
        markers = RedisMarkerStore(await get_redis(settings))
        task_queue = await ArqTaskQueue.connect(settings, clock)
    else:
        # 单进程模式：延迟任务在本进程内执行
        markers = InMemoryMarkerStore(clock)
        task_queue = LocalTaskQueue(TASK_FUNCTIONS, clock=clock)

    order_service = build_order_service(settings, db_manager, dispatcher, markers, task_queue, clock)
    if isinstance(task_queue, LocalTaskQueue):
        task_queue.ctx["batch_correlator"] = order_service.correlator
    install_services(app, order_service)

    logger.info("Storefront application started successfully", redis_enabled=settings.redis_enabled)

    yield

    logger.info("Shutting down Storefront application")
    try:
        await task_queue.close()
        if settings.redis_enabled:
            await close_redis()
        await db_manager.close()
        logger.info("Storefront application shutdown complete")
    except Exception:
        logger.error("Error during application shutdown", exc_info=True)


def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    """pydantic 错误转换为 {字段: [消息]}"""
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return errors


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """创建 FastAPI 应用"""
    settings = settings or get_settings()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        enable_pii_masking=settings.log_pii_masking,
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Storefront order placement and back-office API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.api_debug else [settings.app_url] if settings.app_url else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.exception_handler(StorefrontException)
    async def storefront_exception_handler(request: Request, exc: StorefrontException):
        """业务异常统一返回 {message, code, ...}"""
        if exc.status >= 500:
            logger.error("Request failed", code=exc.code, err=exc.detail)
            if not settings.api_debug:
                return JSONResponse(
                    status_code=exc.status,
                    content={"message": "Internal server error", "code": exc.code},
                )
        return exc.to_response(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理 Pydantic 验证异常"""
        errors = _field_errors(exc)
        logger.warning("Request validation failed", path=request.url.path, fields=list(errors))
        return JSONResponse(
            status_code=422,
            content={"message": "Validation failed", "code": "VALIDATION_FAILED", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def internal_server_error_handler(request: Request, exc: Exception):
        """处理未捕获的服务器错误"""
        logger.error("Unhandled server error", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "message": str(exc) if settings.api_debug else "Internal server error",
                "code": "INTERNAL_ERROR",
            },
        )

    @app.get("/healthz")
    async def health_check():
        """健康检查端点"""
        return {"status": "healthy", "version": __version__}

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
    )
