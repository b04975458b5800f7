import base64
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from fitbit_grabber.errors import (
    AuthTokenError,
    ConfigError,
    DeserializationError,
    HttpError,
    OAuthCodeMissing,
    RefreshTokenMissing,
)
from fitbit_grabber.oauth_manager import (
    FITBIT_TOKEN_URI,
    AuthorizationRequest,
    OAuthManager,
)
from fitbit_grabber.token_store import Credential, MemoryTokenStore

TOKEN_BODY = {"access_token": "abc", "refresh_token": "def", "expires_in": 28800}


@pytest.fixture
def auth_request():
    return AuthorizationRequest(client_id="client", client_secret="secret")


@pytest.fixture
def manager(auth_request):
    return OAuthManager(auth_request, store=MemoryTokenStore())


class FakeListener:
    def __init__(self, code="XYZ", error=None):
        self.code = code
        self.error = error
        self.calls = []

    def listen(self):
        self.calls.append("listen")

    def wait_for_code(self, timeout=None):
        self.calls.append(("wait", timeout))
        if self.error:
            raise self.error
        return self.code

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.calls.append("close")


class RecordingOpener:
    def __init__(self):
        self.urls = []

    def open(self, url):
        self.urls.append(url)
        return False


class TestAuthorizationUrl:
    def test_contains_client_and_redirect(self, manager):
        url = manager.authorization_url()
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert url.startswith("https://www.fitbit.com/oauth2/authorize?")
        assert query["response_type"] == ["code"]
        assert query["client_id"] == ["client"]
        assert query["redirect_uri"] == ["http://localhost:8080"]
        assert query["scope"][0].split() == sorted(manager.auth_request.scopes)
        assert "state" not in query

    def test_state(self, manager):
        query = parse_qs(urlparse(manager.authorization_url(state="s1")).query)
        assert query["state"] == ["s1"]


class TestExchangeCode:
    def test_success(self, manager, make_response):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, TOKEN_BODY)) as mock_post:
            credential = manager.exchange_code("XYZ")

        assert credential.access_token == "abc"
        assert credential.refresh_token == "def"
        assert credential.expires_at is not None

        args, kwargs = mock_post.call_args
        assert args[0] == FITBIT_TOKEN_URI
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["code"] == "XYZ"
        assert kwargs["data"]["redirect_uri"] == "http://localhost:8080"
        assert "client_secret" not in kwargs["data"]
        expected = base64.b64encode(b"client:secret").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
        assert kwargs["timeout"] == 15

    def test_rejected(self, manager, make_response):
        error_body = {"errors": [{"errorType": "invalid_grant"}], "success": False}
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(400, error_body)):
            with pytest.raises(AuthTokenError) as exc_info:
                manager.exchange_code("bad")
        assert exc_info.value.status_code == 400
        assert exc_info.value.payload == error_body

    def test_rejected_with_text_body(self, manager, make_response):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(502, "Bad Gateway")):
            with pytest.raises(AuthTokenError) as exc_info:
                manager.exchange_code("XYZ")
        assert exc_info.value.payload == "Bad Gateway"

    def test_transport_failure(self, manager):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   side_effect=requests.exceptions.ConnectionError("dns")):
            with pytest.raises(HttpError):
                manager.exchange_code("XYZ")

    def test_non_json_success(self, manager, make_response):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, "<html>")):
            with pytest.raises(DeserializationError):
                manager.exchange_code("XYZ")


class TestExchangeRefreshToken:
    def test_missing_refresh_token_makes_no_request(self, manager):
        with patch("fitbit_grabber.oauth_manager.requests.post") as mock_post:
            with pytest.raises(RefreshTokenMissing):
                manager.exchange_refresh_token(Credential(access_token="abc", refresh_token=""))
        mock_post.assert_not_called()

    def test_success(self, manager, make_response):
        body = {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 28800}
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, body)) as mock_post:
            credential = manager.exchange_refresh_token(Credential(access_token="old", refresh_token="r1"))

        assert credential.access_token == "new-access"
        assert credential.refresh_token == "new-refresh"
        data = mock_post.call_args.kwargs["data"]
        assert data == {"grant_type": "refresh_token", "refresh_token": "r1"}

    def test_old_refresh_token_not_carried_over(self, manager, make_response):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, {"access_token": "new"})):
            credential = manager.exchange_refresh_token(Credential(access_token="old", refresh_token="r1"))
        assert credential.refresh_token is None

    def test_rejected(self, manager, make_response):
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(401, {"errors": []})):
            with pytest.raises(AuthTokenError):
                manager.exchange_refresh_token(Credential(access_token="old", refresh_token="r1"))


class TestFlows:
    def test_authenticate_saves_credential(self, manager, make_response, capsys):
        listener = FakeListener(code="XYZ")
        opener = RecordingOpener()
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, TOKEN_BODY)) as mock_post:
            credential = manager.authenticate(listener, opener, timeout=5)

        assert credential.access_token == "abc"
        assert manager.store.load() == credential
        assert listener.calls == ["listen", ("wait", 5), "close"]
        assert opener.urls == [manager.authorization_url()]
        assert mock_post.call_args.kwargs["data"]["code"] == "XYZ"
        assert manager.authorization_url() in capsys.readouterr().out

    def test_authenticate_without_code(self, manager):
        listener = FakeListener(error=OAuthCodeMissing("access_denied"))
        with patch("fitbit_grabber.oauth_manager.requests.post") as mock_post:
            with pytest.raises(OAuthCodeMissing):
                manager.authenticate(listener, RecordingOpener())
        mock_post.assert_not_called()
        assert not manager.store.exists()

    def test_refresh_replaces_stored_credential(self, manager, make_response):
        manager.store.save(Credential(access_token="old", refresh_token="r1"))
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, TOKEN_BODY)):
            manager.refresh()
        stored = manager.store.load()
        assert stored.access_token == "abc"
        assert stored.refresh_token == "def"

    def test_failed_refresh_keeps_stored_credential(self, manager, make_response):
        old = Credential(access_token="old", refresh_token="r1")
        manager.store.save(old)
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(400, {"errors": []})):
            with pytest.raises(AuthTokenError):
                manager.refresh()
        assert manager.store.load() == old

    def test_ensure_valid_token_skips_refresh_when_fresh(self, manager):
        fresh = Credential(access_token="abc", refresh_token="def", expires_at=9_999_999_999.0)
        manager.store.save(fresh)
        with patch("fitbit_grabber.oauth_manager.requests.post") as mock_post:
            assert manager.ensure_valid_token() == fresh
        mock_post.assert_not_called()

    def test_ensure_valid_token_refreshes_when_expired(self, manager, make_response):
        manager.store.save(Credential(access_token="old", refresh_token="r1", expires_at=1.0))
        with patch("fitbit_grabber.oauth_manager.requests.post",
                   return_value=make_response(200, TOKEN_BODY)):
            credential = manager.ensure_valid_token()
        assert credential.access_token == "abc"
        assert manager.store.load().access_token == "abc"

    def test_refresh_requires_store(self, auth_request):
        with pytest.raises(ConfigError):
            OAuthManager(auth_request).refresh()
