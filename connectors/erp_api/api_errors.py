"""Exceptions raised by the ERP API client.

Callers branch on the exception class; the message is meant for humans.
"""

from typing import Any, Optional

AUTH_REQUIRED_MESSAGE = "Authentication required. Please log in."
AUTH_EXPIRED_MESSAGE = "Authentication expired. Please log in again."
REQUEST_FAILED_DETAIL = "Request failed"
REQUEST_FAILED_MESSAGE = "API request failed"
UPLOAD_FAILED_MESSAGE = "Upload failed"


class ApiError(Exception):
    """Base exception for ERP API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationRequiredError(ApiError):
    """401 with no refresh token available."""
    def __init__(self, message: str = AUTH_REQUIRED_MESSAGE):
        super().__init__(message, 401)


class AuthenticationExpiredError(ApiError):
    """401 and the refresh attempt failed; credentials have been cleared."""
    def __init__(self, message: str = AUTH_EXPIRED_MESSAGE):
        super().__init__(message, 401)


class RequestFailedError(ApiError):
    """Non-2xx response."""
    pass


class UploadFailedError(RequestFailedError):
    """Non-2xx response to a multipart upload."""
    pass


class NetworkError(ApiError):
    """The request never produced an HTTP response."""
    pass
