from __future__ import annotations

from enum import Enum


class ErrorReason(str, Enum):
    NETWORK = "network"
    AUTH_FAILURE = "auth_failure"
    MALFORMED_RESPONSE = "malformed_response"


class ServiceError(Exception):
    """A best-effort external call did not produce a usable answer."""

    reason: ErrorReason = ErrorReason.NETWORK

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: {self.reason.value}" + (f" ({detail})" if detail else ""))


class NetworkError(ServiceError):
    reason = ErrorReason.NETWORK


class AuthError(ServiceError):
    reason = ErrorReason.AUTH_FAILURE


class MalformedResponseError(ServiceError):
    reason = ErrorReason.MALFORMED_RESPONSE
