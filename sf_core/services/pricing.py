"""
服务端计价
开启 server_side_pricing 时用商品价（或活动价）和国家运费重新计算订单金额
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sf_core.config import Settings, get_settings

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceQuote:
    unit_price: Decimal
    shipping_fee: Decimal
    total_amount: Decimal


def shipping_fee_for(country: str, settings: Optional[Settings] = None) -> Decimal:
    settings = settings or get_settings()
    return settings.shipping_fees.get(country, settings.default_shipping_fee)


def quote(
    list_price: Decimal,
    quantity: int,
    country: str,
    campaign_price: Optional[Decimal] = None,
    settings: Optional[Settings] = None
) -> PriceQuote:
    """单价 * 数量 + 运费"""
    unit_price = Decimal(campaign_price if campaign_price is not None else list_price)
    fee = shipping_fee_for(country, settings)
    total = (unit_price * quantity + fee).quantize(CENT, rounding=ROUND_HALF_UP)
    return PriceQuote(
        unit_price=unit_price.quantize(CENT, rounding=ROUND_HALF_UP),
        shipping_fee=fee.quantize(CENT, rounding=ROUND_HALF_UP),
        total_amount=total,
    )
