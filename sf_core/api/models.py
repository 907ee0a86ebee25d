"""
API 请求模型
"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

CountryName = Literal["albania", "kosovo", "macedonia"]
StatusName = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class CreateOrderRequest(BaseModel):
    """结账下单请求（每个购物车行一条）"""
    model_config = ConfigDict(extra="ignore")

    customer_full_name: str = Field(min_length=1, max_length=255)
    customer_email: EmailStr
    customer_phone: str = Field(min_length=1, max_length=20)
    customer_address: str = Field(min_length=1, max_length=1000)
    customer_city: str = Field(min_length=1, max_length=100)
    customer_country: CountryName

    product_id: int
    product_price: Decimal = Field(ge=0)
    product_size: Optional[str] = Field(default=None, max_length=50)
    product_color: Optional[str] = Field(default=None, max_length=50)
    quantity: int = Field(ge=1, le=100)
    total_amount: Decimal = Field(ge=0)
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    batch_id: Optional[str] = Field(default=None, max_length=64)
    is_batch_order: bool = False


class UpdateOrderStatusRequest(BaseModel):
    """后台修改订单状态"""
    status: StatusName
    notes: Optional[str] = Field(default=None, max_length=1000)
