"""
타임존 유틸리티

원장과 마켓의 모든 시각은 UTC 기준으로 저장/비교합니다.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하고, aware datetime은 UTC로 변환합니다.

    sqlite 처럼 tzinfo 를 보존하지 않는 저장소에서 읽은 값을 비교하기 전에 사용합니다.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
