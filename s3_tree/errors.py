from __future__ import annotations
"""Error taxonomy shared by the listing client, tree and bulk operations."""
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError, NoCredentialsError
from botocore.exceptions import ConnectionError as EndpointError

NOT_FOUND_CODES = {"NoSuchBucket", "NoSuchKey", "NotFound", "404"}
AUTH_CODES = {
    "AccessDenied",
    "Forbidden",
    "Unauthorized",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "403",
    "401",
}
RATE_LIMIT_CODES = {"SlowDown", "Throttling", "ThrottlingException", "TooManyRequests", "429"}
SERVICE_CODES = {"InternalError", "ServiceUnavailable", "RequestTimeout", "503", "500"}
NETWORK_CODES = {"NetworkingError", "ENOTFOUND", "ECONNREFUSED", "ECONNRESET"}
TRANSPORT_ERRORS = (EndpointError, HTTPClientError, ConnectionError, TimeoutError)


class S3TreeError(RuntimeError):
    """Base class for classified storage errors.

    ``code`` is the service error code (``NoSuchKey``), ``status_code`` the HTTP
    status when one was returned.
    """

    retryable = False

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    def __repr__(self) -> str:
        args = [repr(str(self))]
        if self.code is not None:
            args.append(f"code={self.code!r}")
        if self.status_code is not None:
            args.append(f"status_code={self.status_code!r}")
        return f"{type(self).__name__}({', '.join(args)})"


class NotFoundError(S3TreeError):
    """Raised when a bucket or key does not exist."""


class AuthError(S3TreeError):
    """Raised on 401/403 responses; the caller should reauthenticate."""


class RateLimitedError(S3TreeError):
    """Raised when the service throttles the caller (429)."""

    retryable = True


class ServiceError(S3TreeError):
    """Raised on 5xx responses."""

    retryable = True


class ValidationError(S3TreeError):
    """Raised for any other 4xx response (malformed request, conflict, ...)."""


class NetworkError(S3TreeError):
    """Raised when the endpoint cannot be resolved or reached."""

    retryable = True


class NotConnectedError(RuntimeError):
    """Raised when an S3 operation is attempted before connecting."""


class OperationCancelledError(RuntimeError):
    """Raised when a bulk operation is cancelled between units of work."""


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, S3TreeError) and exc.retryable


def _client_error_details(exc: ClientError) -> tuple[str, Optional[int], str]:
    response = getattr(exc, "response", None) or {}
    error = response.get("Error") or {}
    metadata = response.get("ResponseMetadata") or {}
    code = str(error.get("Code") or "")
    status = metadata.get("HTTPStatusCode")
    if status is None and code.isdigit():
        status = int(code)
    message = error.get("Message") or str(exc)
    return code, status, message


def classify_error(exc: BaseException, context: str = "") -> S3TreeError:
    """Map a botocore (or already classified) exception onto the taxonomy."""

    if isinstance(exc, S3TreeError):
        return exc
    prefix = f"{context}: " if context else ""
    if isinstance(exc, ClientError):
        code, status, message = _client_error_details(exc)
        text = f"{prefix}{message}"
        if code in NOT_FOUND_CODES or status == 404:
            return NotFoundError(text, code=code, status_code=status)
        if code in AUTH_CODES or status in (401, 403):
            return AuthError(text, code=code, status_code=status)
        if code in RATE_LIMIT_CODES or status == 429:
            return RateLimitedError(text, code=code, status_code=status)
        if code in SERVICE_CODES or (status is not None and 500 <= status < 600):
            return ServiceError(text, code=code, status_code=status)
        if code in NETWORK_CODES:
            return NetworkError(text, code=code, status_code=status)
        return ValidationError(text, code=code, status_code=status)
    if isinstance(exc, TRANSPORT_ERRORS):
        return NetworkError(f"{prefix}{exc}", code=type(exc).__name__)
    if isinstance(exc, NoCredentialsError):
        return AuthError(f"{prefix}{exc}", code=type(exc).__name__)
    if isinstance(exc, BotoCoreError):
        return ValidationError(f"{prefix}{exc}", code=type(exc).__name__)
    return ValidationError(f"{prefix}{exc}")
