import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from spotbridge.web_player import TokenResponse

SERVER_TIME = 1700000000


class FakeClock:
    def __init__(self, now: float = SERVER_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as an async context manager"""

    def __init__(self, status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def json(self, content_type: Optional[str] = "application/json"):
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body

    async def text(self) -> str:
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)


class FakeSession:
    """Records requests and replays queued responses (or raises queued exceptions)"""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def _next(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def get(self, url, params=None, headers=None):
        return self._next("GET", url, params=params, headers=headers)

    def head(self, url):
        return self._next("HEAD", url)

    async def close(self):
        self.closed = True


class FakeWebPlayer:
    """Scripted replacement for SpotifyWebPlayer used by broker and API tests"""

    def __init__(self, token_responses: Optional[List[TokenResponse]] = None, server_time: int = SERVER_TIME):
        self.token_responses = list(token_responses or [])
        self.server_time = server_time
        self.server_time_error: Optional[Exception] = None
        self.token_requests: List[Dict[str, Any]] = []
        self.server_time_calls = 0
        self.lyrics: Any = {"lyrics": {"lines": [{"words": "la la"}]}}
        self.lyrics_error: Optional[Exception] = None
        self.recommendation: Any = {"mediaItems": [{"uri": "spotify:playlist:37i9dQZF1E8abc"}]}
        self.bearer_tokens: List[str] = []
        self.secret_payload: Any = {}
        self.closed = False

    async def fetch_secret_dict(self, url=None):
        return self.secret_payload

    async def fetch_server_time(self) -> int:
        self.server_time_calls += 1
        await asyncio.sleep(0)
        if self.server_time_error is not None:
            raise self.server_time_error
        return self.server_time

    async def request_token(self, params: Dict[str, Any]) -> TokenResponse:
        self.token_requests.append(dict(params))
        await asyncio.sleep(0)
        return self.token_responses.pop(0)

    async def get_lyrics(self, token: str, track_id: str):
        self.bearer_tokens.append(token)
        if self.lyrics_error is not None:
            raise self.lyrics_error
        return self.lyrics

    async def get_recommend_song(self, token: str, track_id: str):
        self.bearer_tokens.append(token)
        return self.recommendation

    async def close(self):
        self.closed = True


def token_response(token: Optional[str] = "web-token", expires_ms: Optional[int] = None, status: int = 200):
    data: Dict[str, Any] = {}
    if token:
        data["accessToken"] = token
        data["clientId"] = "d8a5ed958d274c2e8ee717e6a4b0971d"
    if expires_ms is not None:
        data["accessTokenExpirationTimestampMs"] = expires_ms
    return TokenResponse(ok=200 <= status < 300, status=status, data=data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
