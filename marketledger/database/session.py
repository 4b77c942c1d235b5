from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker


@contextmanager
def read_only_session(session_factory: sessionmaker) -> Iterator[Session]:
    """조회 전용 세션 - 어떤 경우에도 commit 하지 않고 종료 시 rollback"""
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
