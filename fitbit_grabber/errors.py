"""
Error types raised by the Fitbit grabber.
"""

from typing import Any, Optional


class FitbitError(Exception):
    """Base class for every error this package raises."""


class HttpError(FitbitError):
    """Transport failure: DNS, TLS, timeout, or a client that could not be built."""


class ApiError(HttpError):
    """The API answered with an error status (>= 400)."""

    def __init__(self, status_code: int, body: str, url: str = ""):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status_code} from {url or 'Fitbit API'}: {body}")


class IoError(FitbitError):
    """Reading or writing local state failed."""


class UrlError(FitbitError):
    """A relative path could not be joined onto the API base URL."""


class AuthTokenError(FitbitError):
    """The token endpoint rejected the request."""

    def __init__(self, status_code: int, payload: Any):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"token endpoint returned {status_code}: {payload}")


class RefreshTokenMissing(FitbitError):
    """A refresh was attempted with a credential that has no refresh token."""

    def __init__(self) -> None:
        super().__init__("refresh token missing")


class OAuthCodeMissing(FitbitError):
    """The authorization callback did not carry a code."""

    def __init__(self, error: Optional[str] = None):
        self.error = error
        message = "missing code param"
        if error:
            message = f"{message} (authorization server said: {error})"
        super().__init__(message)


class CallbackTimeout(FitbitError):
    """No authorization callback arrived before the timeout."""


class DeserializationError(FitbitError):
    """A stored credential or a response body could not be decoded."""


class DateParseError(FitbitError, ValueError):
    """A date argument was not in YYYY-MM-DD form."""


class ConfigError(FitbitError):
    """Required configuration is missing or unreadable."""
