import json

import pytest
import requests

from fitbit_grabber.token_store import Credential, TokenStore


@pytest.fixture
def credential():
    return Credential(
        access_token="abc",
        refresh_token="def",
        expires_in=28800,
        expires_at=1_700_000_000.0,
        scopes=["activity", "heartrate"],
        user_id="ABC123",
    )


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / ".token")


@pytest.fixture
def make_response():
    """Build a real requests.Response without touching the network."""

    def _make(status_code=200, body=None, url="https://api.fitbit.com/1/"):
        response = requests.Response()
        response.status_code = status_code
        if body is None:
            body = ""
        if not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        response._content = body.encode("utf-8") if isinstance(body, str) else body
        response.encoding = "utf-8"
        response.url = url
        return response

    return _make
