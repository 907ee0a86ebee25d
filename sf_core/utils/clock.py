"""
时钟抽象

下单时间戳、批次窗口查询和标记过期都从同一个时钟取时间，
测试中替换为可手动推进的时钟。
"""
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """系统 UTC 时钟"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
