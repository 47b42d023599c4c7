"""
backend/app/services/market_errors.py

Purpose:
    Typed error taxonomy for market operations. Every public engine operation
    raises MarketError, which doubles as an HTTPException so routers can let it
    propagate unchanged.

Dependencies:
    - fastapi
"""

from __future__ import annotations

from enum import Enum

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    invalid_argument = "invalid_argument"
    unauthenticated = "unauthenticated"
    permission_denied = "permission_denied"
    not_found = "not_found"
    failed_precondition = "failed_precondition"
    aborted = "aborted"
    internal = "internal"


_HTTP_STATUS = {
    ErrorCode.invalid_argument: status.HTTP_400_BAD_REQUEST,
    ErrorCode.unauthenticated: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.permission_denied: status.HTTP_403_FORBIDDEN,
    ErrorCode.not_found: status.HTTP_404_NOT_FOUND,
    ErrorCode.failed_precondition: status.HTTP_409_CONFLICT,
    ErrorCode.aborted: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.internal: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class MarketError(HTTPException):
    def __init__(self, code: ErrorCode, detail: str) -> None:
        super().__init__(status_code=_HTTP_STATUS[code], detail=detail)
        self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {self.detail}"


def invalid_argument(detail: str) -> MarketError:
    return MarketError(ErrorCode.invalid_argument, detail)


def unauthenticated(detail: str = "User must be authenticated.") -> MarketError:
    return MarketError(ErrorCode.unauthenticated, detail)


def permission_denied(detail: str) -> MarketError:
    return MarketError(ErrorCode.permission_denied, detail)


def not_found(detail: str) -> MarketError:
    return MarketError(ErrorCode.not_found, detail)


def failed_precondition(detail: str) -> MarketError:
    return MarketError(ErrorCode.failed_precondition, detail)


def aborted(detail: str = "Transaction could not be committed. Please retry.") -> MarketError:
    return MarketError(ErrorCode.aborted, detail)
