from typing import Any, Dict, List, Optional

import httpx


class FneError(Exception):
    """Base class for every error raised by the FNE client"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.correlation_id = correlation_id
        self.http_status = http_status
        self.details = details or []

    def __str__(self) -> str:
        text = self.message
        if self.code:
            text = f"[{self.code}] {text}"
        if self.correlation_id:
            text += f" (correlation id: {self.correlation_id})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "httpStatus": self.http_status,
            "details": self.details,
            "correlationId": self.correlation_id,
        }


class ValidationError(FneError):
    """
    Payload failed local checks. Never sent over the network.

    Args:
        issues: every offending field as {"field": ..., "issue": ...}
    """

    def __init__(self, issues: List[Dict[str, str]], message: Optional[str] = None):
        self.issues = list(issues)
        if message is None:
            message = "Invalid invoice: " + "; ".join(
                f"{issue['field']}: {issue['issue']}" for issue in self.issues
            )
        super().__init__(message, code="VALIDATION_ERROR", details=self.issues)

    @property
    def fields(self) -> List[str]:
        return [issue["field"] for issue in self.issues]


class NetworkError(FneError):
    """No response was received from the FNE service"""


class FneTimeoutError(FneError):
    """The request exceeded its configured deadline"""


class ServiceError(FneError):
    """The FNE service answered with a structured error body"""

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ServiceError":
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            body = {"message": response.text or response.reason_phrase}

        error_cls = ERRORS_BY_STATUS.get(status, ServiceError)
        return error_cls(
            body.get("message") or f"FNE service returned HTTP {status}",
            code=body.get("code"),
            correlation_id=body.get("correlationId")
            or response.headers.get("X-Correlation-Id"),
            http_status=body.get("httpStatus") or status,
            details=body.get("details"),
        )


class AuthError(ServiceError):
    """Session invalid (401) or insufficient privilege (403)"""


class NotFoundError(ServiceError):
    """Unknown invoice reference"""


class ConflictError(ServiceError):
    """Invoice number already submitted under a different idempotency key"""


ERRORS_BY_STATUS = {
    401: AuthError,
    403: AuthError,
    404: NotFoundError,
    409: ConflictError,
}
