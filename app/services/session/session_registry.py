from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging
from datetime import datetime
from typing import Optional, List, Tuple
from app import models
from app.core.exceptions import (
    NotFoundError,
    ForbiddenError,
    ConflictError,
    ValidationError,
    PersistenceFailure,
)
from app.schemas.exam import ExamData
from app.schemas.session import (
    SessionData,
    SessionFlags,
    InitSessionData,
    HeartbeatData,
    MessageCreate,
    MessageData,
)
from app.schemas.submission import SubmitRequest, SubmitData, SubmissionData
from app.services.session.device_binding import resolve_binding, DeviceBinding
from app.services.session.expiry import is_expired, remaining_seconds
from app.services.session.message_service import MessageService, to_message_data
from app.services.submission.submission_service import SubmissionService
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class SessionRegistry:
    """응시 세션 상태 관리

    NEW -> ACTIVE -> SUBMITTED / 시간 만료 자동 제출
    제출된 세션을 다시 열면 재응시 차단 상태로 읽기 전용 반환
    """

    def __init__(
        self,
        submission_service: Optional[SubmissionService] = None,
        message_service: Optional[MessageService] = None
    ):
        self.submissions = submission_service or SubmissionService()
        self.messages = message_service or MessageService()

    # ---- 조회 ----

    async def get_exam(self, db: AsyncSession, exam_id: str) -> models.Exam:
        exam = await db.get(models.Exam, exam_id)
        if not exam:
            raise NotFoundError(f"시험을 찾을 수 없습니다: {exam_id}")
        return exam

    async def get_exam_by_code(self, db: AsyncSession, exam_code: str) -> models.Exam:
        result = await db.execute(select(models.Exam).filter_by(code=exam_code))
        exam = result.scalars().first()
        if not exam:
            raise NotFoundError(f"시험 코드를 찾을 수 없습니다: {exam_code}")
        return exam

    async def get_session(self, db: AsyncSession, session_id: str) -> models.ExamSession:
        session = await db.get(models.ExamSession, session_id)
        if not session:
            raise NotFoundError(f"세션을 찾을 수 없습니다: {session_id}")
        return session

    async def get_session_with_exam(
        self,
        db: AsyncSession,
        session_id: str
    ) -> Tuple[models.ExamSession, ExamData]:
        session = await self.get_session(db, session_id)
        exam = await self.get_exam(db, session.exam_id)
        return session, ExamData.from_model(exam)

    async def get_owned_session(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str
    ) -> Tuple[models.ExamSession, ExamData]:
        """학생 본인의 세션만 허용"""
        session, exam = await self.get_session_with_exam(db, session_id)
        if session.student_id != student_id:
            raise ForbiddenError("본인의 응시 세션이 아닙니다")
        return session, exam

    async def _list_student_sessions(
        self,
        db: AsyncSession,
        exam_id: str,
        student_id: str
    ) -> List[models.ExamSession]:
        result = await db.execute(
            select(models.ExamSession)
            .filter_by(exam_id=exam_id, student_id=student_id)
            .order_by(models.ExamSession.created_at.desc())
        )
        return list(result.scalars().all())

    # ---- 상태 전이 ----

    async def _mark_submitted(self, db: AsyncSession, session: models.ExamSession, now: datetime) -> None:
        """submitted_at 이 비어 있을 때만 제출 처리 (동시 제출 시 먼저 쓴 쪽 유지)"""
        try:
            await db.execute(
                update(models.ExamSession)
                .where(
                    models.ExamSession.id == session.id,
                    models.ExamSession.submitted_at.is_(None)
                )
                .values(submitted_at=now, is_active=False)
            )
            await db.commit()
            await db.refresh(session)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"세션 제출 처리 실패 - 세션: {session.id}: {str(e)}")
            raise PersistenceFailure(f"세션 제출 처리 중 오류가 발생했습니다: {str(e)}") from e

    async def expire_if_needed(
        self,
        db: AsyncSession,
        session: models.ExamSession,
        exam: ExamData,
        now: Optional[datetime] = None
    ) -> bool:
        """시간이 지난 미제출 세션을 자동 제출. 자동 제출했으면 True"""
        now = now or utcnow()
        if session.submitted_at is not None:
            return False
        if not is_expired(session.created_at, exam.duration, now):
            return False
        await self._mark_submitted(db, session, now)
        logger.info(f"시간 만료로 자동 제출 - 세션: {session.id}, 시험: {exam.id}")
        return True

    async def ensure_writable(
        self,
        db: AsyncSession,
        session: models.ExamSession,
        exam: ExamData,
        now: Optional[datetime] = None
    ) -> None:
        if session.submitted_at is not None:
            raise ConflictError("이미 제출된 세션입니다")
        if await self.expire_if_needed(db, session, exam, now):
            raise ConflictError("시험 시간이 종료되어 자동 제출되었습니다")

    def ensure_question(self, exam: ExamData, q_idx: int) -> None:
        valid = {exam.question_index(position) for position in range(len(exam.questions))}
        if q_idx not in valid:
            raise ValidationError(f"존재하지 않는 문항 번호입니다: {q_idx}")

    async def _activate(
        self,
        db: AsyncSession,
        binding: DeviceBinding,
        fingerprint: Optional[str],
        now: datetime
    ) -> bool:
        """후보 세션 활성화. legacy claim 은 지문이 여전히 비어 있을 때만 성공"""
        values = {"is_active": True, "last_heartbeat_at": now}
        stmt = update(models.ExamSession).where(
            models.ExamSession.id == binding.session.id,
            models.ExamSession.submitted_at.is_(None)
        )
        if binding.legacy_claim:
            stmt = stmt.where(models.ExamSession.device_fingerprint.is_(None))
            values["device_fingerprint"] = fingerprint

        try:
            result = await db.execute(stmt.values(**values))
            if result.rowcount == 0:
                await db.rollback()
                return False
            await db.commit()
            await db.refresh(binding.session)
            return True
        except IntegrityError:
            # 같은 기기로 이미 다른 세션이 열려 있음
            await db.rollback()
            return False
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"세션 활성화 실패 - 세션: {binding.session.id}: {str(e)}")
            raise PersistenceFailure(f"세션 활성화 중 오류가 발생했습니다: {str(e)}") from e

    async def _create(
        self,
        db: AsyncSession,
        exam_id: str,
        student_id: str,
        fingerprint: Optional[str],
        now: datetime
    ) -> Optional[models.ExamSession]:
        """새 세션 생성. 동시 요청이 먼저 만든 경우 None"""
        session = models.ExamSession(
            exam_id=exam_id,
            student_id=student_id,
            device_fingerprint=fingerprint,
            created_at=now,
            is_active=True,
            last_heartbeat_at=now,
            used_clarifications=0
        )
        try:
            db.add(session)
            await db.commit()
            await db.refresh(session)
            return session
        except IntegrityError:
            await db.rollback()
            logger.info(f"동시 세션 생성 감지 - 시험: {exam_id}, 학생: {student_id}")
            return None
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"세션 생성 실패 - 시험: {exam_id}, 학생: {student_id}: {str(e)}")
            raise PersistenceFailure(f"세션 생성 중 오류가 발생했습니다: {str(e)}") from e

    async def _build_init_data(
        self,
        db: AsyncSession,
        exam: ExamData,
        session: models.ExamSession,
        now: datetime,
        flags: SessionFlags
    ) -> InitSessionData:
        if session.submitted_at is not None:
            remaining = 0 if exam.duration else None
        else:
            remaining = remaining_seconds(session.created_at, exam.duration, now)
        return InitSessionData(
            exam=exam,
            session=SessionData.model_validate(session),
            messages=await self.messages.list_messages(db, session.id),
            remaining_seconds=remaining,
            flags=flags
        )

    async def init_session(
        self,
        db: AsyncSession,
        exam_code: str,
        student_id: str,
        device_fingerprint: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> InitSessionData:
        """시험 입장: 재응시 차단 / 자동 제출 / 이어하기 / 새 세션"""
        now = now or utcnow()
        exam_model = await self.get_exam_by_code(db, exam_code)
        exam = ExamData.from_model(exam_model)

        # 동시 요청과 경합하면 한 번 더 판정
        for attempt in range(2):
            sessions = await self._list_student_sessions(db, exam.id, student_id)

            submitted = [s for s in sessions if s.submitted_at is not None]
            if submitted:
                latest = max(submitted, key=lambda s: s.submitted_at)
                logger.info(f"재응시 차단 - 시험: {exam.id}, 학생: {student_id}, 세션: {latest.id}")
                return await self._build_init_data(
                    db, exam, latest, now, SessionFlags(is_retake_blocked=True)
                )

            binding = resolve_binding(device_fingerprint, sessions)
            if binding:
                session = binding.session
                if is_expired(session.created_at, exam.duration, now):
                    await self._mark_submitted(db, session, now)
                    logger.info(f"입장 시 시간 만료 자동 제출 - 세션: {session.id}")
                    return await self._build_init_data(
                        db, exam, session, now,
                        SessionFlags(auto_submitted=True, time_expired=True)
                    )

                if await self._activate(db, binding, device_fingerprint, now):
                    logger.info(
                        f"세션 이어하기 - 세션: {session.id}, legacy claim: {binding.legacy_claim}"
                    )
                    return await self._build_init_data(db, exam, session, now, SessionFlags())
                continue

            session = await self._create(db, exam.id, student_id, device_fingerprint, now)
            if session:
                logger.info(f"새 세션 생성 - 세션: {session.id}, 시험: {exam.id}, 학생: {student_id}")
                return await self._build_init_data(db, exam, session, now, SessionFlags())

            logger.info(f"세션 재판정 ({attempt + 1}) - 시험: {exam.id}, 학생: {student_id}")

        raise ConflictError("동시에 같은 시험에 입장하는 요청이 있어 세션을 확정하지 못했습니다")

    async def heartbeat(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        now: Optional[datetime] = None
    ) -> HeartbeatData:
        now = now or utcnow()
        session, exam = await self.get_owned_session(db, session_id, student_id)

        if session.submitted_at is not None:
            return HeartbeatData(
                session=SessionData.model_validate(session),
                remaining_seconds=0 if exam.duration else None,
                flags=SessionFlags(is_retake_blocked=True)
            )

        if await self.expire_if_needed(db, session, exam, now):
            return HeartbeatData(
                session=SessionData.model_validate(session),
                remaining_seconds=0,
                flags=SessionFlags(auto_submitted=True, time_expired=True)
            )

        try:
            session.last_heartbeat_at = now
            session.is_active = True
            await db.commit()
            await db.refresh(session)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"heartbeat 저장 실패 - 세션: {session_id}: {str(e)}")
            raise PersistenceFailure(f"heartbeat 저장 중 오류가 발생했습니다: {str(e)}") from e

        return HeartbeatData(
            session=SessionData.model_validate(session),
            remaining_seconds=remaining_seconds(session.created_at, exam.duration, now)
        )

    async def append_message(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        message: MessageCreate,
        now: Optional[datetime] = None
    ) -> MessageData:
        """대화 한 턴 기록. 학생 질문이면 used_clarifications 증가"""
        now = now or utcnow()
        session, exam = await self.get_owned_session(db, session_id, student_id)
        await self.ensure_writable(db, session, exam, now)
        self.ensure_question(exam, message.q_idx)

        try:
            row = self.messages.add_message(
                db, session.id, message.q_idx, message.role, message.content,
                message_type=message.message_type, now=now
            )
            if message.role == "user":
                session.used_clarifications = (session.used_clarifications or 0) + 1
            await db.commit()
            await db.refresh(row)
            return to_message_data(row)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"메시지 저장 실패 - 세션: {session_id}, 문항: {message.q_idx}: {str(e)}")
            raise PersistenceFailure(f"메시지 저장 중 오류가 발생했습니다: {str(e)}") from e

    async def save_draft(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        q_idx: int,
        text: str,
        now: Optional[datetime] = None
    ) -> models.Submission:
        now = now or utcnow()
        session, exam = await self.get_owned_session(db, session_id, student_id)
        await self.ensure_writable(db, session, exam, now)
        self.ensure_question(exam, q_idx)
        return await self.submissions.save_draft(db, session.id, q_idx, text, now=now)

    async def submit(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        request: SubmitRequest,
        now: Optional[datetime] = None
    ) -> SubmitData:
        """최종 제출: 답안, 대화 기록, 제출 시각을 한 트랜잭션으로 저장"""
        now = now or utcnow()
        session, exam = await self.get_owned_session(db, session_id, student_id)
        await self.ensure_writable(db, session, exam, now)

        for answer in request.answers:
            self.ensure_question(exam, answer.q_idx)
        for item in request.transcript:
            self.ensure_question(exam, item.q_idx)

        try:
            for answer in request.answers:
                await self.submissions.save_draft(
                    db, session.id, answer.q_idx, answer.text, now=now, commit=False
                )

            # 이미 저장된 메시지 수 이후의 턴만 추가
            stored_counts = await self.messages.count_by_question(db, session.id)
            seen = {}
            for item in request.transcript:
                position = seen.get(item.q_idx, 0)
                seen[item.q_idx] = position + 1
                if position < stored_counts.get(item.q_idx, 0):
                    continue
                self.messages.add_message(db, session.id, item.q_idx, item.role, item.content, now=now)

            result = await db.execute(
                update(models.ExamSession)
                .where(
                    models.ExamSession.id == session.id,
                    models.ExamSession.submitted_at.is_(None)
                )
                .values(submitted_at=now, is_active=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise ConflictError("이미 제출된 세션입니다")

            await db.commit()
            await db.refresh(session)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"최종 제출 실패 - 세션: {session_id}: {str(e)}")
            raise PersistenceFailure(f"최종 제출 중 오류가 발생했습니다: {str(e)}") from e

        logger.info(f"최종 제출 완료 - 세션: {session.id}, 답안 수: {len(request.answers)}")
        submissions = await self.submissions.get_all(db, session.id)
        return SubmitData(
            session=SessionData.model_validate(session),
            submissions=[SubmissionData.model_validate(s) for s in submissions]
        )
