"""
OAuth Manager for the Fitbit Web API: authorization-code flow and token refresh.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional
from urllib.parse import urlencode

import requests

from .callback_server import DEFAULT_REDIRECT_URL, CallbackListener, WebBrowserOpener
from .errors import AuthTokenError, ConfigError, DeserializationError, HttpError, RefreshTokenMissing
from .token_store import Credential

logger = logging.getLogger(__name__)

FITBIT_AUTH_URI = "https://www.fitbit.com/oauth2/authorize"
FITBIT_TOKEN_URI = "https://api.fitbit.com/oauth2/token"
DEFAULT_SCOPES = frozenset({"activity", "heartrate", "profile", "weight", "sleep", "settings"})


@dataclass(frozen=True)
class AuthorizationRequest:
    """Client registration details used for every token endpoint call."""

    client_id: str
    client_secret: str
    authorize_url: str = FITBIT_AUTH_URI
    token_url: str = FITBIT_TOKEN_URI
    scopes: FrozenSet[str] = field(default=DEFAULT_SCOPES)
    redirect_url: str = DEFAULT_REDIRECT_URL


class OAuthManager:
    """Trades authorization codes and refresh tokens for Fitbit credentials.

    Fitbit expects the client secret in an HTTP Basic header rather than the
    form body. Each call is a single blocking round trip; nothing is retried.
    """

    def __init__(self, auth_request: AuthorizationRequest, store=None, timeout: float = 15):
        self.auth_request = auth_request
        self.store = store
        self.timeout = timeout

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.auth_request.client_id,
            "redirect_uri": self.auth_request.redirect_url,
            "scope": " ".join(sorted(self.auth_request.scopes)),
        }
        if state:
            params["state"] = state
        return f"{self.auth_request.authorize_url}?{urlencode(params)}"

    def _basic_auth_header(self) -> str:
        auth_str = f"{self.auth_request.client_id}:{self.auth_request.client_secret}"
        auth_b64 = base64.b64encode(auth_str.encode()).decode()
        return f"Basic {auth_b64}"

    def _request_token(self, data: dict) -> Credential:
        headers = {
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        logger.debug("POST %s grant_type=%s", self.auth_request.token_url, data["grant_type"])

        try:
            response = requests.post(
                self.auth_request.token_url, headers=headers, data=data, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise HttpError(f"token request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AuthTokenError(response.status_code, _error_payload(response))

        try:
            payload = response.json()
        except ValueError as e:
            raise DeserializationError(f"token endpoint returned non-JSON body: {e}") from e
        return Credential.from_token_response(payload)

    def exchange_code(self, code: str) -> Credential:
        """Exchange an authorization code for access + refresh tokens."""
        credential = self._request_token({
            "grant_type": "authorization_code",
            "client_id": self.auth_request.client_id,
            "redirect_uri": self.auth_request.redirect_url,
            "code": code,
        })
        logger.info("Obtained Fitbit tokens from authorization code")
        return credential

    def exchange_refresh_token(self, credential: Credential) -> Credential:
        """Trade the credential's refresh token for a complete new credential.

        Fitbit rotates refresh tokens, so the old one is dead after this
        succeeds and must not be carried over.
        """
        if not credential.refresh_token:
            raise RefreshTokenMissing()

        refreshed = self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        })
        logger.info("Refreshed Fitbit access token")
        return refreshed

    def authenticate(self, listener: Optional[CallbackListener] = None, opener=None,
                     timeout: Optional[float] = None) -> Credential:
        """Run the browser authorization flow and persist the resulting credential."""
        listener = listener or CallbackListener(self.auth_request.redirect_url)
        opener = opener or WebBrowserOpener()
        auth_url = self.authorization_url()

        with listener:
            # Bound before the browser can reach the redirect.
            listener.listen()
            opener.open(auth_url)
            print("\n🔗 Your browser should open automatically. If not, open this URL in your browser:")
            print(auth_url)
            code = listener.wait_for_code(timeout=timeout)

        credential = self.exchange_code(code)
        if self.store is not None:
            self.store.save(credential)
        return credential

    def refresh(self) -> Credential:
        """Load the stored credential, refresh it, and replace the stored one."""
        credential = self.exchange_refresh_token(self._require_store().load())
        self.store.save(credential)
        return credential

    def ensure_valid_token(self, leeway: int = 60) -> Credential:
        """Return the stored credential, refreshing it first if it has expired."""
        credential = self._require_store().load()
        if credential.is_expired(leeway=leeway):
            logger.info("Stored Fitbit token expired, refreshing")
            credential = self.exchange_refresh_token(credential)
            self.store.save(credential)
        return credential

    def _require_store(self):
        if self.store is None:
            raise ConfigError("OAuthManager has no token store")
        return self.store


def _error_payload(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
