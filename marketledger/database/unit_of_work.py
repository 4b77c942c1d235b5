"""
Unit of Work - 원자적 작업 단위

원장/커밋먼트/지급 서비스는 저장소에 직접 commit 하지 않고, 모든 쓰기 작업을
`within_transaction(fn)` 콜백 안에서 수행합니다.

- 콜백이 정상 종료되면 한 번에 commit 됩니다.
- 콜백에서 예외가 발생하면 전체가 rollback 되며 예외는 그대로 전파됩니다.
- 낙관적 락 충돌(StaleDataError)은 새 세션으로 콜백 전체를 다시 실행합니다.
  재시도 횟수를 모두 소진하면 ConcurrencyExhaustedError 를 발생시킵니다.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from marketledger.core.exceptions import ConcurrencyExhaustedError
from marketledger.database.session import read_only_session

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    def __init__(self, session_factory: sessionmaker, max_retries: int = 5):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.session_factory = session_factory
        self.max_retries = max_retries

    def within_transaction(self, fn: Callable[[Session], T], label: str = "unit") -> T:
        """fn(session) 을 하나의 트랜잭션으로 실행 (충돌 시 제한된 횟수만큼 재시도)"""
        for attempt in range(1, self.max_retries + 1):
            session = self.session_factory()
            try:
                result = fn(session)
                session.commit()
                if attempt > 1:
                    logger.info(f"[{label}] committed after {attempt} attempts")
                return result
            except StaleDataError as e:
                session.rollback()
                logger.warning(
                    f"[{label}] optimistic lock conflict (attempt {attempt}/{self.max_retries}): {str(e)}"
                )
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        raise ConcurrencyExhaustedError(
            message=f"{label}: gave up after {self.max_retries} conflicting attempts",
            details={"attempts": self.max_retries},
        )

    def read(self, fn: Callable[[Session], T]) -> T:
        """읽기 전용 조회 - 재시도 없이 한 세션에서 실행"""
        with read_only_session(self.session_factory) as session:
            return fn(session)
