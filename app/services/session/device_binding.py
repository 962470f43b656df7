"""기기 지문으로 이어서 응시할 미제출 세션 결정

우선순위
1. 요청에 지문이 없으면 기존 세션을 이어받지 않는다 (항상 새 세션)
2. 지문이 정확히 일치하는 세션
3. 지문이 기록되지 않은 가장 최근 세션 (legacy claim, 활성화 시 지문을 기록)
4. 없음
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from app import models


@dataclass(frozen=True)
class DeviceBinding:
    session: models.ExamSession
    legacy_claim: bool = False


def _newest_first(sessions: Sequence[models.ExamSession]):
    return sorted(sessions, key=lambda s: s.created_at or datetime.min, reverse=True)


def resolve_binding(
    fingerprint: Optional[str],
    unsubmitted_sessions: Sequence[models.ExamSession]
) -> Optional[DeviceBinding]:
    if not fingerprint:
        return None

    candidates = [s for s in _newest_first(unsubmitted_sessions) if s.submitted_at is None]

    for session in candidates:
        if session.device_fingerprint == fingerprint:
            return DeviceBinding(session=session)

    for session in candidates:
        if not session.device_fingerprint:
            return DeviceBinding(session=session, legacy_claim=True)

    return None
