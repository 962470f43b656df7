"""서비스 계층 공통 예외

서비스는 아래 예외만 던지고, HTTP 응답 변환은 main.py 의 핸들러가 담당한다.
"""
from typing import Optional


class AppError(Exception):
    status_code: int = 500
    message: str = "요청을 처리할 수 없습니다"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class UnauthorizedError(AppError):
    status_code = 401
    message = "로그인이 필요합니다"


class NotFoundError(AppError):
    status_code = 404
    message = "대상을 찾을 수 없습니다"


class ForbiddenError(AppError):
    status_code = 403
    message = "접근 권한이 없습니다"


class ConflictError(AppError):
    status_code = 409
    message = "현재 상태에서는 요청을 처리할 수 없습니다"


class ValidationError(AppError):
    status_code = 422
    message = "요청 값이 올바르지 않습니다"


class OracleFailure(AppError):
    """채점 모델 호출 실패 또는 응답 파싱 실패"""
    status_code = 502
    message = "AI 평가 응답을 처리할 수 없습니다"


class PersistenceFailure(AppError):
    status_code = 503
    message = "데이터 저장 중 오류가 발생했습니다"
