"""시험 시간 만료 계산

남은 시간은 저장하지 않고 항상 created_at + duration 으로 계산한다.
세션을 읽을 때마다 호출되며 별도의 타이머는 없다.
"""
from datetime import datetime, timedelta
from typing import Optional

from app.utils.datetime_utils import to_naive_utc


def remaining_milliseconds(created_at: datetime, duration_minutes: int, now: datetime) -> Optional[int]:
    """남은 시간(ms). 무제한(duration=0)이면 None"""
    if not duration_minutes:
        return None
    deadline = to_naive_utc(created_at) + timedelta(minutes=duration_minutes)
    remaining = deadline - to_naive_utc(now)
    return max(0, int(remaining.total_seconds() * 1000))


def remaining_seconds(created_at: datetime, duration_minutes: int, now: datetime) -> Optional[int]:
    remaining_ms = remaining_milliseconds(created_at, duration_minutes, now)
    if remaining_ms is None:
        return None
    return remaining_ms // 1000


def is_expired(created_at: datetime, duration_minutes: int, now: datetime) -> bool:
    remaining_ms = remaining_milliseconds(created_at, duration_minutes, now)
    return remaining_ms is not None and remaining_ms <= 0
