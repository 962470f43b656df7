import json
import logging
from typing import Any, Optional

from lzstring import LZString

logger = logging.getLogger(__name__)

_lz = LZString()


def decompress_data(compressed: str) -> Any:
    """LZ-String 압축 데이터 해제 (JSON 이면 파싱, 아니면 문자열 그대로)"""
    if not compressed:
        raise ValueError("No compressed data provided")

    try:
        decompressed = _lz.decompress(compressed)
    except Exception as e:
        raise ValueError(f"Failed to decompress data: {e}") from e
    if not decompressed:
        raise ValueError("Failed to decompress data")

    try:
        return json.loads(decompressed)
    except (TypeError, ValueError):
        return decompressed


def compress_data(data: Any) -> str:
    original = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return _lz.compress(original)


def resolve_answer_text(answer: Optional[str], compressed_answer_data: Optional[str]) -> str:
    """압축된 답안이 있으면 해제해서 사용하고, 실패하면 원본 컬럼 사용"""
    if compressed_answer_data:
        try:
            payload = decompress_data(compressed_answer_data)
            if isinstance(payload, dict) and payload.get("answer"):
                return str(payload["answer"])
            if isinstance(payload, str) and payload:
                return payload
        except ValueError as e:
            logger.error(f"답안 압축 해제 실패: {str(e)}")
    return answer or ""


def resolve_message_content(content: Optional[str], compressed_content: Optional[str]) -> str:
    if compressed_content:
        try:
            payload = decompress_data(compressed_content)
            if isinstance(payload, str):
                return payload or (content or "")
            return json.dumps(payload, ensure_ascii=False)
        except ValueError as e:
            logger.error(f"메시지 압축 해제 실패: {str(e)}")
    return content or ""
