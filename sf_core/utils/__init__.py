"""
Storefront 实用工具模块
"""

from .logger import get_logger, LogContext, setup_logging
from .errors import StorefrontException, ValidationError, NotFoundError

__all__ = [
    "get_logger",
    "LogContext",
    "setup_logging",
    "StorefrontException",
    "ValidationError",
    "NotFoundError",
]
