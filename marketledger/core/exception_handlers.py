"""
FastAPI 예외 핸들러

모든 오류 응답은 {success: false, error: {code, message, details}} 형태로 통일한다.
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .exceptions import ConcurrencyExhaustedError, InternalServerError, InvariantViolationError

logger = logging.getLogger("marketledger.api")


def _describe(request: Request) -> str:
    client = request.client.host if request.client else "-"
    return f"{request.method} {request.url} from {client}"


def _error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }


async def handle_base_api_exception(request, exc):
    where = _describe(request)
    headers = None
    if isinstance(exc, InvariantViolationError):
        # 원장 불변식 위반은 데이터 손상 가능성이 있으므로 상세 정보까지 남긴다
        logger.critical(f"[{exc.error_code}] {where}: {exc.message} details={exc.details}")
    elif isinstance(exc, ConcurrencyExhaustedError):
        logger.warning(f"[{exc.error_code}] {where}: {exc.message}")
        headers = {"Retry-After": "1"}
    elif exc.status_code >= 500:
        logger.error(f"[{exc.error_code}] {where} -> {exc.status_code}: {exc.message}")
    else:
        logger.warning(f"[{exc.error_code}] {where} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=headers)  # type: ignore[arg-type]


async def handle_http_exception(request, exc):
    logger.warning(f"[HTTP {exc.status_code}] {_describe(request)}: {exc.detail}")
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_validation_error(request, exc):
    errors = jsonable_encoder(exc.errors())
    logger.warning(f"[VALIDATION_001] {_describe(request)}: {errors}")
    return JSONResponse(
        status_code=422,
        content=_error_body("VALIDATION_001", "Validation failed", {"errors": errors}),
    )


async def handle_unexpected_error(request, exc):
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"[Unhandled {type(exc).__name__}] {_describe(request)}: {exc}\n{stack}"
    )
    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)  # type: ignore[arg-type]
