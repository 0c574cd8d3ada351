from __future__ import annotations

from typing import Optional

from recommender.common.clock import OperationCancelledError


class AdmissionDeniedError(RuntimeError):
    pass


class CircuitOpenError(AdmissionDeniedError):
    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is open, retry after {retry_after:.1f}s")


class TransientError(RuntimeError):
    pass


class NetworkError(TransientError):
    pass


class MalformedResponseError(RuntimeError):
    pass


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        url: str = "",
        method: str = "GET",
        retry_after: Optional[float] = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.url = url
        self.method = method
        self.retry_after = retry_after
        super().__init__(f"API error: {status_code} {message} for {method} {url}")

    @property
    def server_error(self) -> bool:
        return self.status_code >= 500

    @property
    def transient(self) -> bool:
        return self.server_error or self.retry_after is not None


__all__ = [
    "AdmissionDeniedError",
    "ApiError",
    "CircuitOpenError",
    "MalformedResponseError",
    "NetworkError",
    "OperationCancelledError",
    "TransientError",
]
