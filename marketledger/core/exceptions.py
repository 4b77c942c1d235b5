from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

    def to_error(self) -> Dict[str, Any]:
        """결과 객체의 error 필드 형태 ({code, message})"""
        return {"code": self.error_code, "message": self.message}


class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )


class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )


class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )


# ============================================================================
# Ledger / Market domain errors
# ============================================================================

class InsufficientBalanceError(BaseAPIException):
    """Available tokens do not cover the requested commitment"""
    def __init__(self, message: str = "Insufficient balance", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INSUFFICIENT_BALANCE",
            message=message,
            details=details
        )


class MarketNotFoundError(BaseAPIException):
    """Market does not exist"""
    def __init__(self, market_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="MARKET_NOT_FOUND",
            message=f"Market not found: {market_id}",
            details={"market_id": market_id}
        )


class MarketNotActiveError(BaseAPIException):
    """Market is not accepting commitments"""
    def __init__(self, market_id: str, market_status: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="MARKET_NOT_ACTIVE",
            message=f"Market {market_id} is not active (status: {market_status})",
            details={"market_id": market_id, "status": market_status}
        )


class MarketEndedError(BaseAPIException):
    """Market end time has passed"""
    def __init__(self, market_id: str, ends_at: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="MARKET_ENDED",
            message=f"Market {market_id} ended at {ends_at}",
            details={"market_id": market_id, "ends_at": ends_at}
        )


class OptionNotFoundError(BaseAPIException):
    """Explicit option id is not part of the market"""
    def __init__(self, market_id: str, option_id: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="OPTION_NOT_FOUND",
            message=f"Option not found: {option_id}",
            details={"market_id": market_id, "option_id": option_id}
        )


class AmbiguousTargetError(BaseAPIException):
    """Neither position nor option id resolves to an option"""
    def __init__(self, message: str = "Either optionId or position must be specified", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="AMBIGUOUS_TARGET",
            message=message,
            details=details
        )


class InvalidAmountError(BaseAPIException):
    """Token amount outside the accepted range"""
    def __init__(self, message: str = "Invalid token amount", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_AMOUNT",
            message=message,
            details=details
        )


class InvariantViolationError(BaseAPIException):
    """Ledger invariant broken - data corruption or programming error"""
    def __init__(self, message: str = "Ledger invariant violated", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INVARIANT_VIOLATION",
            message=message,
            details=details
        )


class ConcurrencyExhaustedError(BaseAPIException):
    """Optimistic lock retries exhausted; the caller may retry"""
    def __init__(self, message: str = "Concurrent update retries exhausted", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONCURRENCY_EXHAUSTED",
            message=message,
            details=details
        )


class NoWinnersError(BaseAPIException):
    """Winning option has no commitments; the pool is left unallocated"""
    def __init__(self, message: str = "No winning commitments", details: Optional[Dict] = None, calculation: Any = None):
        self.calculation = calculation
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="NO_WINNERS",
            message=message,
            details=details
        )


class DistributionPartialFailureError(BaseAPIException):
    """Some per-user payout distributions failed"""
    def __init__(self, message: str = "Payout distribution partially failed", details: Optional[Dict] = None, result: Any = None):
        self.result = result
        super().__init__(
            status_code=status.HTTP_207_MULTI_STATUS,
            error_code="DISTRIBUTION_PARTIAL_FAILURE",
            message=message,
            details=details
        )


class CommitmentNotFoundError(BaseAPIException):
    """Commitment does not exist"""
    def __init__(self, commitment_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="COMMITMENT_NOT_FOUND",
            message=f"Commitment not found: {commitment_id}",
            details={"commitment_id": commitment_id}
        )


class RollbackNotAllowedError(BaseAPIException):
    """Commitment can no longer be rolled back"""
    def __init__(self, commitment_id: str, reason: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="ROLLBACK_NOT_ALLOWED",
            message=f"Commitment {commitment_id} cannot be rolled back: {reason}",
            details={"commitment_id": commitment_id, "reason": reason}
        )
