from urllib.parse import parse_qs, urlparse

import pytest
import requests

from spotbridge import spotify_auth
from spotbridge.config import Settings
from spotbridge.errors import UpstreamError

SETTINGS = Settings(client_id="client-id", client_secret="client-secret", http_timeout=5.0)


class FakeTokenResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


@pytest.fixture
def post_calls(monkeypatch):
    calls = []
    responses = []

    def fake_post(url, data=None, timeout=None):
        calls.append({"url": url, "data": data, "timeout": timeout})
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(spotify_auth.requests, "post", fake_post)
    return calls, responses


def test_build_authorize_url():
    url = spotify_auth.build_authorize_url(SETTINGS, "xyz")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == spotify_auth.AUTHORIZE_URL
    assert query["client_id"] == ["client-id"]
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["http://localhost:8888/callback"]
    assert query["state"] == ["xyz"]
    assert "user-library-modify" in query["scope"][0].split(" ")


def test_exchange_code(post_calls):
    calls, responses = post_calls
    responses.append(FakeTokenResponse(payload={"access_token": "a", "refresh_token": "r", "expires_in": 3600}))

    token_data = spotify_auth.exchange_code(SETTINGS, "the-code")

    assert token_data["access_token"] == "a"
    assert calls[0]["url"] == spotify_auth.TOKEN_URL
    assert calls[0]["timeout"] == 5.0
    assert calls[0]["data"] == {
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "http://localhost:8888/callback",
        "client_id": "client-id",
        "client_secret": "client-secret",
    }


def test_exchange_code_rejected(post_calls):
    _, responses = post_calls
    responses.append(FakeTokenResponse(400, text='{"error":"invalid_grant"}'))

    with pytest.raises(UpstreamError) as exc_info:
        spotify_auth.exchange_code(SETTINGS, "stale")

    assert exc_info.value.status == 400
    assert "invalid_grant" in exc_info.value.details


def test_exchange_code_network_failure(post_calls):
    _, responses = post_calls
    responses.append(requests.ConnectionError("boom"))

    with pytest.raises(UpstreamError):
        spotify_auth.exchange_code(SETTINGS, "code")


def test_refresh_keeps_refresh_token_when_not_rotated(post_calls):
    calls, responses = post_calls
    responses.append(FakeTokenResponse(payload={"access_token": "new", "expires_in": 3600}))

    token_data = spotify_auth.refresh_access_token(SETTINGS, "old-refresh")

    assert token_data == {"access_token": "new", "expires_in": 3600, "refresh_token": "old-refresh"}
    assert calls[0]["data"]["grant_type"] == "refresh_token"


def test_refresh_with_malformed_json(post_calls):
    _, responses = post_calls
    responses.append(FakeTokenResponse(200, payload=None))

    with pytest.raises(UpstreamError):
        spotify_auth.refresh_access_token(SETTINGS, "old-refresh")
