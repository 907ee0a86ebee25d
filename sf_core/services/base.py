"""
基础服务类
"""
from typing import Optional, Dict, Any, List
from abc import ABC

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.utils.logger import get_logger
from sf_core.utils.errors import StorefrontException, InternalServerError, ValidationError
from sf_core.database import DatabaseManager, get_db_manager


class BaseService(ABC):
    """基础服务类"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or get_db_manager()
        self.logger = get_logger(self.__class__.__name__)

    async def execute_with_transaction(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """在事务中执行操作（任何异常都会回滚整个事务）"""
        try:
            async with self.db_manager.get_transaction() as session:
                return await operation(session, *args, **kwargs)
        except StorefrontException:
            raise
        except Exception as e:
            self.logger.error("Transaction operation failed", exc_info=True)
            raise InternalServerError(
                code="TRANSACTION_FAILED",
                detail=f"Database transaction failed: {str(e)}"
            ) from e

    async def execute_with_session(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """使用数据库会话执行只读操作"""
        try:
            async with self.db_manager.get_session() as session:
                return await operation(session, *args, **kwargs)
        except StorefrontException:
            raise
        except Exception as e:
            self.logger.error("Session operation failed", exc_info=True)
            raise InternalServerError(
                code="SESSION_OPERATION_FAILED",
                detail=f"Database operation failed: {str(e)}"
            ) from e

    def validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """验证必填字段"""
        missing_fields = [
            field for field in required_fields
            if field not in data or data[field] is None or data[field] == ""
        ]

        if missing_fields:
            raise ValidationError(
                code="MISSING_REQUIRED_FIELDS",
                detail=f"Missing required fields: {', '.join(missing_fields)}",
                errors={field: [f"The {field} field is required."] for field in missing_fields},
            )


class RepositoryMixin:
    """仓储混入类 - 提供常用的数据库操作"""

    async def get_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int
    ) -> Optional[Any]:
        """根据ID获取记录"""
        return await session.get(model_class, record_id)

    async def get_by_field(
        self,
        session: AsyncSession,
        model_class,
        field_name: str,
        field_value: Any
    ) -> Optional[Any]:
        """根据字段获取记录"""
        stmt = select(model_class).where(getattr(model_class, field_name) == field_value)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete(
        self,
        session: AsyncSession,
        instance: Any
    ) -> bool:
        """删除记录"""
        await session.delete(instance)
        await session.flush()
        return True
