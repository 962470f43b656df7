"""실행 중인 서버를 대상으로 한 수동 API 점검 스크립트

시험 생성 -> 입장 -> 답안 저장 -> 제출 -> 자동 채점 -> 통계 순서로 호출한다.
DEBUG 서버의 /api/auth/session 으로 로그인 쿠키를 발급받는다.
"""
import aiohttp
import asyncio
import json
import logging
import uuid
from typing import Dict, Any, Optional

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


class ExamAPITester:
    def __init__(self, base_url: str = "http://localhost:8000/api"):
        self.base_url = base_url.rstrip('/')

    async def login(self, session: aiohttp.ClientSession, user_id: str, role: str) -> Dict[str, Any]:
        """개발용 로그인 (쿠키는 ClientSession 의 cookie jar 에 저장)"""
        return await self._request(session, "POST", "/auth/session", {"user_id": user_id, "role": role})

    async def _request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        payload: Optional[Dict] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=payload) as response:
                body = await response.json()
                if response.status >= 400:
                    print(f"❌ {method} {path} -> {response.status}: {json.dumps(body, ensure_ascii=False)}")
                    return {"error": body, "status": response.status}
                return body
        except aiohttp.ClientError as e:
            print(f"Error calling {method} {path}: {e}")
            return {"error": str(e)}

    async def create_exam(self, session: aiohttp.ClientSession, code: str) -> Dict[str, Any]:
        payload = {
            "title": "점검용 시험",
            "code": code,
            "duration": 60,
            "questions": [
                {"idx": 0, "type": "short", "prompt": "대한민국의 수도는 어디인가요? 이유와 함께 설명하세요."}
            ],
            "rubric": [
                {"evaluationArea": "정확성", "detailedCriteria": "사실에 부합"}
            ]
        }
        return await self._request(session, "POST", "/exams", payload)

    async def init_session(self, session: aiohttp.ClientSession, code: str, fingerprint: str) -> Dict[str, Any]:
        return await self._request(
            session, "POST", "/sessions/init", {"exam_code": code, "device_fingerprint": fingerprint}
        )

    async def save_draft(self, session: aiohttp.ClientSession, session_id: str, q_idx: int, text: str) -> Dict[str, Any]:
        return await self._request(session, "PUT", f"/sessions/{session_id}/drafts", {"q_idx": q_idx, "text": text})

    async def submit(self, session: aiohttp.ClientSession, session_id: str, answer: str) -> Dict[str, Any]:
        payload = {
            "answers": [{"q_idx": 0, "text": answer}],
            "transcript": [
                {"q_idx": 0, "role": "user", "content": "수도의 정의를 알려주세요."},
                {"q_idx": 0, "role": "assistant", "content": "정부 기관이 위치한 도시를 말합니다."}
            ]
        }
        return await self._request(session, "POST", f"/sessions/{session_id}/submit", payload)

    async def auto_grade(self, session: aiohttp.ClientSession, session_id: str, force: bool = False) -> Dict[str, Any]:
        return await self._request(session, "POST", f"/gradings/{session_id}/auto", {"force_regrade": force})

    async def get_overview(self, session: aiohttp.ClientSession, exam_id: str) -> Dict[str, Any]:
        return await self._request(session, "GET", f"/exams/{exam_id}/overview")


async def main():
    tester = ExamAPITester()
    code = f"SMOKE-{uuid.uuid4().hex[:6].upper()}"
    instructor_id = f"instructor-{uuid.uuid4().hex[:6]}"
    student_id = f"student-{uuid.uuid4().hex[:6]}"

    async with aiohttp.ClientSession() as instructor, aiohttp.ClientSession() as student:
        await tester.login(instructor, instructor_id, "instructor")
        await tester.login(student, student_id, "student")

        exam = await tester.create_exam(instructor, code)
        if "error" in exam:
            return
        exam_id = exam["data"]["id"]
        print(f"✅ 시험 생성: {exam_id} ({code})")

        init = await tester.init_session(student, code, "smoke-device")
        if "error" in init:
            return
        session_id = init["data"]["session"]["id"]
        print(f"✅ 세션 입장: {session_id}, 남은 시간 {init['data']['remaining_seconds']}초")

        for text in ("서울", "The capital is Seoul.", "The capital is Seoul."):
            draft = await tester.save_draft(student, session_id, 0, text)
            print(f"   답안 저장 - 수정 횟수 {draft.get('data', {}).get('edit_count')}")

        submitted = await tester.submit(student, session_id, "The capital is Seoul.")
        print(f"✅ 제출: {submitted.get('data', {}).get('session', {}).get('submitted_at')}")

        graded = await tester.auto_grade(instructor, session_id)
        print(f"✅ 자동 채점: {json.dumps(graded.get('data'), ensure_ascii=False, indent=2)}")

        again = await tester.auto_grade(instructor, session_id)
        print(f"   재호출 skipped={again.get('data', {}).get('skipped')}")

        overview = await tester.get_overview(instructor, exam_id)
        print(f"✅ 통계: {json.dumps(overview.get('data'), ensure_ascii=False, indent=2)}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n점검이 사용자에 의해 중단되었습니다.")
    except Exception as e:
        print(f"점검이 오류로 인해 중단되었습니다: {e}")
