import asyncio
import logging
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import aiohttp
from yarl import URL

from spotbridge.config import SECRET_CIPHER_DICT_URL
from spotbridge.errors import ServerTimeUnavailable, UpstreamError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://open.spotify.com/api/token"
SERVER_TIME_URL = "https://open.spotify.com/"
RECOMMEND_URL = (
    "https://spclient.wg.spotify.com/inspiredby-mix/v2/seed_to_playlist/spotify:track:{track_id}"
)
LYRICS_URL = "https://spclient.wg.spotify.com/color-lyrics/v2/track/{track_id}"
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:145.0) Gecko/20100101 Firefox/145.0"

NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


@dataclass
class TokenResponse:
    ok: bool
    status: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def access_token(self) -> Optional[str]:
        return self.data.get("accessToken") or None


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class SpotifyWebPlayer:
    """aiohttp client for the internal web player endpoints.

    The session is created lazily inside the running loop and carries the
    ``sp_dc`` cookie for open.spotify.com only.
    """

    def __init__(self, sp_dc: str = "", timeout: float = 20.0, session: Optional[aiohttp.ClientSession] = None):
        self.sp_dc = sp_dc
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            jar = aiohttp.CookieJar()
            if self.sp_dc:
                jar.update_cookies({"sp_dc": self.sp_dc}, URL("https://open.spotify.com/"))
            self.session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT},
                cookie_jar=jar,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()

    async def fetch_secret_dict(self, url: str = SECRET_CIPHER_DICT_URL) -> Any:
        session = self._get_session()
        try:
            async with session.get(url) as response:
                if not _is_success(response.status):
                    raise UpstreamError(
                        f"Failed to download secrets: {response.status}",
                        status=response.status,
                        body=await response.text(),
                    )
                # raw.githubusercontent serves text/plain
                return await response.json(content_type=None)
        except NETWORK_ERRORS as e:
            raise UpstreamError(f"Failed to download secrets: {e}") from e

    async def fetch_server_time(self) -> int:
        """Unix seconds from the Date header of open.spotify.com"""
        session = self._get_session()
        try:
            async with session.head(SERVER_TIME_URL) as response:
                date_header = response.headers.get("Date")
        except NETWORK_ERRORS as e:
            raise ServerTimeUnavailable(f"Server time request failed: {e}") from e

        if not date_header:
            raise ServerTimeUnavailable("Missing Date header in server response")
        try:
            return int(parsedate_to_datetime(date_header).timestamp())
        except (TypeError, ValueError) as e:
            raise ServerTimeUnavailable(f"Unable to parse server time: {date_header!r}") from e

    async def request_token(self, params: Dict[str, Any]) -> TokenResponse:
        session = self._get_session()
        headers = {"Accept": "application/json", "App-Platform": "WebPlayer"}
        query = {key: str(value) for key, value in params.items()}
        try:
            async with session.get(TOKEN_URL, params=query, headers=headers) as response:
                status = response.status
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    if _is_success(status):
                        raise UpstreamError("Token endpoint returned malformed JSON", status=status) from e
                    data = None
        except NETWORK_ERRORS as e:
            raise UpstreamError(f"Token request failed: {e}") from e

        if not isinstance(data, dict):
            data = {}
        return TokenResponse(ok=_is_success(status), status=status, data=data)

    async def get_recommend_song(self, token: str, track_id: str) -> Dict[str, Any]:
        if not token:
            raise ValueError("Missing Spotify access token")
        if not track_id:
            raise ValueError("Missing trackId")

        session = self._get_session()
        url = RECOMMEND_URL.format(track_id=track_id)
        try:
            async with session.get(
                url,
                params={"response-format": "json"},
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                if not _is_success(response.status):
                    text = await response.text()
                    raise UpstreamError(
                        f"getRecommendSong failed: HTTP {response.status}", status=response.status, body=text
                    )
                return await response.json(content_type=None)
        except NETWORK_ERRORS as e:
            raise UpstreamError(f"getRecommendSong failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"getRecommendSong returned malformed JSON: {e}") from e

    async def get_lyrics(self, token: str, track_id: str) -> Dict[str, Any]:
        """Color lyrics for a track; a 404 means the track has no lyrics"""
        session = self._get_session()
        url = LYRICS_URL.format(track_id=track_id)
        logger.debug(f"Fetching lyrics from {url}")
        try:
            async with session.get(
                url,
                params={"format": "json", "market": "from_token"},
                headers={"Authorization": f"Bearer {token}", "App-Platform": "WebPlayer"},
            ) as response:
                logger.debug(f"Lyrics response status: {response.status}")
                if response.status == 404:
                    logger.info(f"No lyrics for track {track_id}")
                    return {"error": "Lyrics not found", "lyrics": None}
                if not _is_success(response.status):
                    text = await response.text()
                    logger.warning(f"Lyrics fetch failed ({response.status}): {text[:200]}")
                    raise UpstreamError(
                        f"get_lyrics failed: HTTP {response.status}", status=response.status, body=text
                    )
                return await response.json(content_type=None)
        except NETWORK_ERRORS as e:
            raise UpstreamError(f"get_lyrics failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"get_lyrics returned malformed JSON: {e}") from e
