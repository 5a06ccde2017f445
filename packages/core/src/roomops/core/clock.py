"""时钟抽象

生产环境使用 SystemClock；测试/回放注入 ManualClock 获得确定性时间。
所有时间戳均为带时区的 UTC datetime。
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """墙上时钟"""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """手动推进的时钟"""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=UTC)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self._now += timedelta(minutes=minutes, seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        self._now = value
