import time
from datetime import datetime, timezone
from typing import Any, Optional

import pytz

from roundengine.core.config import settings

TZ = pytz.timezone(settings.TZ)

def now_ms() -> int:
    return int(time.time() * 1000)

def to_local(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return TZ.localize(dt)
    return dt.astimezone(TZ)

def from_ms(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone(TZ)

def parse_backend_time(value: Any) -> Optional[datetime]:
    """
    后端时间字段有多种写法：
      - ISO 字符串（可带 Z）
      - 毫秒时间戳
      - Firestore 风格 {"_seconds": .., "_nanoseconds": ..}
    无法解析返回 None
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_local(value)
    if isinstance(value, (int, float)):
        return from_ms(value)
    if isinstance(value, dict):
        secs = value.get("_seconds", value.get("seconds"))
        if secs is None:
            return None
        nanos = value.get("_nanoseconds", value.get("nanoseconds")) or 0
        return from_ms(int(secs) * 1000 + int(nanos) // 1_000_000)
    if isinstance(value, str):
        s = value.strip()
        if s.isdigit():
            return from_ms(int(s))
        try:
            return to_local(datetime.fromisoformat(s.replace("Z", "+00:00")))
        except ValueError:
            pass
        try:
            return to_local(datetime.strptime(s, "%Y-%m-%d %H:%M:%S"))
        except ValueError:
            return None
    return None


class SystemClock:
    """墙上时钟（毫秒）"""

    def now_ms(self) -> int:
        return now_ms()


class ManualClock:
    """可手动推进的时钟，供本地模拟回放/测试注入"""

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += int(ms)
        return self._now

    def set(self, ms: int) -> None:
        self._now = int(ms)
