import logging.config
import sys
from typing import Any, Dict

LEDGER_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s"
# 경고 이상은 위치 정보까지 stderr 로 남긴다 (낙관적 락 충돌, 지급 실패 추적용)
PROBLEM_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s (%(filename)s:%(lineno)d)\n%(message)s"


def build_logging_config(log_level: str = "INFO", sql_echo: bool = False) -> Dict[str, Any]:
    log_level = log_level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "ledger": {"format": LEDGER_FORMAT},
            "problem": {"format": PROBLEM_FORMAT},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "ledger",
                "stream": sys.stdout,
            },
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "problem",
                "stream": sys.stderr,
                "level": "WARNING",
            },
        },
        "root": {"handlers": ["stdout", "stderr"], "level": log_level},
        "loggers": {
            "marketledger": {
                "handlers": ["stdout", "stderr"],
                "level": log_level,
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "handlers": ["stdout"],
                "level": "INFO" if sql_echo else "WARNING",
                "propagate": False,
            },
        },
    }


def setup_logging(log_level: str = "INFO", sql_echo: bool = False) -> None:
    logging.config.dictConfig(build_logging_config(log_level, sql_echo))
