"""시간 계산 유틸리티

DB 에는 timezone 정보 없는 UTC 시각을 저장한다.
"""
from datetime import datetime, timezone

from app.utils.scoring import round_half_up


def utcnow() -> datetime:
    """현재 UTC 시각 (naive)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def minutes_between(start: datetime, end: datetime) -> int:
    """두 시각 사이의 분 (반올림)"""
    return round_half_up((to_naive_utc(end) - to_naive_utc(start)).total_seconds() / 60)
