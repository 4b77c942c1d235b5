from marketledger.config import Settings


class TestSettings:
    """설정 기본값"""

    def test_business_rule_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.MAX_COMMITMENT_TOKENS == 1000
        assert settings.HOUSE_FEE_PERCENTAGE == 0.05
        assert settings.ROLLBACK_WINDOW_HOURS == 24
        assert settings.HEALTH_SAMPLE_SIZE == 50

    def test_only_used_application_fields_are_declared(self):
        declared = set(Settings.model_fields)

        assert {"APP_NAME", "DEBUG", "LOG_LEVEL"} <= declared
        assert declared.isdisjoint({"PROJECT_NAME", "API_V1_STR", "ENVIRONMENT"})

    def test_database_url_prefers_explicit_url(self):
        explicit = Settings(_env_file=None, DATABASE_URL="sqlite:///ledger.db")
        composed = Settings(
            _env_file=None,
            DATABASE_URL=None,
            POSTGRES_USERNAME="ledger",
            POSTGRES_PASSWORD="p@ss",
            POSTGRES_HOST="db",
            POSTGRES_DATABASE="ledger",
        )

        assert explicit.database_url == "sqlite:///ledger.db"
        assert composed.database_url == "postgresql+psycopg2://ledger:p%40ss@db:5432/ledger"
