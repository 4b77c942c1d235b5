import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import marketledger.models  # noqa: F401,E402
from marketledger.config import settings  # noqa: E402
from marketledger.database.connection import build_engine  # noqa: E402
from marketledger.models.base import Base  # noqa: E402


def init_db():
    """데이터베이스 초기화 (원장/마켓/정산 테이블 생성)"""
    engine = build_engine(settings)
    try:
        Base.metadata.create_all(bind=engine)
        print(f"Database initialized successfully: {engine.url.render_as_string(hide_password=True)}")

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise
    finally:
        engine.dispose()


if __name__ == "__main__":
    init_db()
