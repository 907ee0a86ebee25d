"""
Storefront Configuration Management
遵循约束：环境变量前缀 SF__
"""
from decimal import Decimal
from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SF__",
        case_sensitive=False
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="storefront")
    db_user: str = Field(default="storefront")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)
    # 完整连接串（如 sqlite+aiosqlite:///./storefront.db），设置后优先使用
    database_url_override: Optional[str] = Field(default=None)

    # Redis
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    redis_password: Optional[str] = Field(default=None)
    redis_max_connections: int = Field(default=50)
    arq_redis_db: int = Field(default=2)
    # 关闭时使用进程内标记存储和 asyncio 延迟任务（单进程开发环境）
    redis_enabled: bool = Field(default=True)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/v1")
    api_title: str = Field(default="Storefront API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text
    log_pii_masking: bool = Field(default=True)

    # Mail
    mail_api_url: Optional[str] = Field(default=None)
    mail_api_key: Optional[str] = Field(default=None)
    mail_from: str = Field(default="orders@noirclothes.shop")
    mail_reply_to: str = Field(default="info@noirclothes.shop")
    admin_email: str = Field(default="admin@noirclothes.shop")
    mail_timeout_seconds: float = Field(default=10.0)
    shop_name: str = Field(default="AndShoes")

    # 下单批次检测窗口（秒）
    burst_window_seconds: int = Field(default=10)
    batch_defer_seconds: int = Field(default=3)
    batch_recheck_window_seconds: int = Field(default=5)
    batch_marker_ttl_seconds: int = Field(default=5)

    # 订单
    unique_id_max_attempts: int = Field(default=5)
    restock_on_cancel: bool = Field(default=False)
    enforce_status_graph: bool = Field(default=False)
    server_side_pricing: bool = Field(default=False)
    shipping_fees: Dict[str, Decimal] = Field(default={
        "kosovo": Decimal("2.40"),
        "albania": Decimal("5.00"),
        "macedonia": Decimal("5.00"),
    })
    default_shipping_fee: Decimal = Field(default=Decimal("5.00"))

    # 商品目录
    low_stock_threshold: int = Field(default=10)
    default_product_image: str = Field(default="/images/default-campaign.jpg")
    app_url: str = Field(default="")

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api/"):
            raise ValueError("API prefix must start with /api/")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def redis_url(self) -> str:
        """构建 Redis 连接字符串"""
        password = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{password}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
