# backend/proxy/errors.py
"""
Errors raised while proxying a single request.

Everything that can still be reported with a clean status code derives from
ProxyError and carries that status. StreamingFailure happens after the
headers went out, so it is only ever logged and used to drop the connection.
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for failures that are turned into a local error response."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingTargetParameter(ProxyError):
    """The client called /proxy without a `url` query parameter."""
    status_code = 400

    def __init__(self):
        super().__init__("missing url")


class InvalidTargetURL(ProxyError):
    """The `url` parameter is not an absolute http(s) URL."""
    status_code = 400

    def __init__(self, url: str, reason: str):
        super().__init__(f"invalid url {url!r}: {reason}")
        self.url = url
        self.reason = reason


class FetchExhausted(ProxyError):
    """Every attempt to reach the target failed (timeout or network error)."""
    status_code = 502

    def __init__(self, url: str, attempts: int, last_cause: Optional[BaseException]):
        super().__init__(f"Failed to fetch the target URL after {attempts} attempt(s): {last_cause}")
        self.url = url
        self.attempts = attempts
        self.last_cause = last_cause


class StreamingFailure(Exception):
    """The upstream body broke after the status line was already sent."""

    def __init__(self, url: str, bytes_sent: int, cause: BaseException):
        super().__init__(f"stream from {url} failed after {bytes_sent} bytes: {cause}")
        self.url = url
        self.bytes_sent = bytes_sent
        self.cause = cause
