from functools import lru_cache
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="marketledger/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Market Ledger API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""

    # 설정되어 있으면 POSTGRES_* 보다 우선한다 (테스트/로컬 sqlite 용)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Ledger
    LEDGER_MAX_RETRIES: int = 5  # 낙관적 락 충돌 시 재시도 횟수

    # Commitment Rules
    MIN_COMMITMENT_TOKENS: int = 1
    MAX_COMMITMENT_TOKENS: int = 1000
    DEFAULT_ODDS: float = 2.0  # 아직 스테이킹된 토큰이 없을 때의 배당
    MIN_ODDS: float = 1.1
    MAX_ODDS: float = 10.0
    ODDS_EPSILON: float = 1e-6

    # Payout Rules
    HOUSE_FEE_PERCENTAGE: float = 0.05  # 플랫폼 수수료 (고정)
    MIN_CREATOR_FEE_PERCENTAGE: float = 0.01
    MAX_CREATOR_FEE_PERCENTAGE: float = 0.05
    PAYOUT_BATCH_SIZE: int = 50  # 지급 배치당 사용자 수

    # Rollback
    ROLLBACK_WINDOW_HOURS: int = 24  # 커밋 후 개별 취소 가능한 시간

    # Reconciliation
    HEALTH_SAMPLE_SIZE: int = 50  # 헬스 리포트에서 감사할 사용자 수


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


settings = get_settings()
