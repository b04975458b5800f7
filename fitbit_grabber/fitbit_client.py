"""
Fitbit API client for retrieving fitness data.
"""

import logging
from datetime import date
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import requests
from requests.utils import check_header_validity

from .errors import ApiError, DeserializationError, HttpError, UrlError
from .query import DateQuery, format_date
from .token_store import Credential

logger = logging.getLogger(__name__)

API_ROOT = "https://api.fitbit.com"
BASE_URL = f"{API_ROOT}/1/"
USER_AGENT = "fitbit-grabber (0.1.0)"


class FitbitClient:
    """Bearer-authenticated GET client for the Fitbit Web API.

    Every response with status >= 400 raises ApiError carrying the body, so
    rate-limit and auth failures never reach callers as data.
    """

    def __init__(self, credential: Credential, base_url: str = BASE_URL,
                 user_agent: str = USER_AGENT, timeout: float = 30):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.user_agent = user_agent
        self.timeout = timeout

        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "User-Agent": user_agent,
            "Accept": "application/json",
        }
        try:
            for header in headers.items():
                check_header_validity(header)
        except requests.exceptions.InvalidHeader as e:
            raise HttpError(f"unable to build HTTP client: {e}") from e

        self.session = requests.Session()
        self.session.headers.update(headers)

    def _resolve(self, relative_path: str, api_version: Optional[str]) -> str:
        base = f"{API_ROOT}/{api_version}/" if api_version else self.base_url
        if urlparse(relative_path).scheme or relative_path.startswith("/"):
            raise UrlError(f"expected a path relative to {base}, got {relative_path!r}")
        try:
            url = urljoin(base, relative_path)
        except ValueError as e:
            raise UrlError(f"cannot join {relative_path!r} onto {base}: {e}") from e
        if not url.startswith(base):
            raise UrlError(f"{relative_path!r} resolves outside {base}")
        return url

    def _send(self, relative_path: str, api_version: Optional[str]) -> requests.Response:
        url = self._resolve(relative_path, api_version)
        logger.debug("GET - %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise HttpError(f"GET {url} failed: {e}") from e

        if response.status_code >= 400:
            raise ApiError(response.status_code, response.text, url)
        return response

    def get(self, relative_path: str, api_version: Optional[str] = None) -> str:
        """GET a path relative to the API base and return the body text."""
        return self._send(relative_path, api_version).text

    def get_json(self, relative_path: str, api_version: Optional[str] = None) -> Any:
        response = self._send(relative_path, api_version)
        try:
            return response.json()
        except ValueError as e:
            raise DeserializationError(f"response from {response.url} is not JSON: {e}") from e

    def heart(self, day: date) -> str:
        return self.get(f"user/-/activities/heart/date/{format_date(day)}/1d.json")

    def step(self, day: date) -> str:
        return self.get(f"user/-/activities/steps/date/{format_date(day)}/1d.json")

    def body_weight(self, query: DateQuery) -> str:
        """Body weight time series for a period since, or a range from, a base date."""
        return self.get(f"user/-/body/weight/date/{query.path_suffix()}.json")

    def user_profile(self) -> str:
        return self.get("user/-/profile.json")

    def devices(self) -> str:
        return self.get("user/-/devices.json")

    def alarms(self, tracker_id: str, user_id: str = "-") -> str:
        return self.get(f"user/{user_id}/devices/tracker/{tracker_id}/alarms.json")

    def sleep(self, day: date) -> str:
        # Sleep logs are only served by the 1.2 API.
        return self.get(f"user/-/sleep/date/{format_date(day)}.json", api_version="1.2")

    def daily_activity_summary(self, day: date, user_id: str = "-") -> str:
        return self.get(f"user/{user_id}/activities/date/{format_date(day)}.json")

    def close(self) -> None:
        self.session.close()
