# token_manager.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from spotbridge.errors import TokenAcquisitionFailed
from spotbridge.secret_table import SecretTable
from spotbridge.totp import build_legacy_params, derive_secret, generate_otp
from spotbridge.web_player import SpotifyWebPlayer, TokenResponse

logger = logging.getLogger(__name__)

SAFETY_MARGIN = 60
FALLBACK_LIFETIME = 1800
LEGACY_VERSION_CUTOFF = 10


@dataclass(frozen=True)
class InternalToken:
    access_token: str
    expires_at: int
    client_id: Optional[str] = None

    def is_fresh(self, now: float, margin: int = SAFETY_MARGIN) -> bool:
        return self.expires_at - margin > now


class InternalTokenBroker:
    """Obtains and caches the web player bearer token.

    Cache reads and writes are locked independently and no lock is held while
    talking to Spotify. Concurrent misses share one in-flight refresh.
    """

    def __init__(
        self,
        web_player: SpotifyWebPlayer,
        secrets: Optional[SecretTable] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.web_player = web_player
        self.secrets = secrets if secrets is not None else SecretTable()
        self.clock = clock
        self._token: Optional[InternalToken] = None
        self._lock = asyncio.Lock()
        self._in_flight: Optional[asyncio.Future] = None

    async def cached_token(self) -> Optional[InternalToken]:
        """Return the cached token if it is still usable, without refreshing"""
        async with self._lock:
            token = self._token
        if token is not None and token.is_fresh(self.clock()):
            return token
        return None

    async def invalidate(self) -> None:
        async with self._lock:
            self._token = None

    async def get_token(self, version: Optional[int] = None) -> InternalToken:
        cached = await self.cached_token()
        if cached is not None:
            return cached

        async with self._lock:
            # another caller may have stored a token while we waited
            if self._token is not None and self._token.is_fresh(self.clock()):
                return self._token
            if self._in_flight is None:
                self._in_flight = asyncio.ensure_future(self._refresh(version))
            in_flight = self._in_flight

        # shield so one cancelled caller does not cancel the shared refresh
        return await asyncio.shield(in_flight)

    async def _refresh(self, version: Optional[int]) -> InternalToken:
        try:
            token = await self._acquire(version)
            async with self._lock:
                self._token = token
            logger.info(f"Web player token refreshed, expires at {token.expires_at}")
            return token
        finally:
            async with self._lock:
                self._in_flight = None

    async def _acquire(self, requested_version: Optional[int]) -> InternalToken:
        version = self.secrets.ensure_version(requested_version)
        secret = derive_secret(self.secrets.get(version))
        server_time = await self.web_player.fetch_server_time()
        otp = generate_otp(secret, server_time)

        params: Dict[str, Any] = {
            "reason": "transport",
            "productType": "web-player",
            "totp": otp,
            "totpServer": otp,
            "totpVer": version,
        }
        if version < LEGACY_VERSION_CUTOFF:
            params.update(build_legacy_params(server_time, int(self.clock() * 1000)))

        response = await self.web_player.request_token(params)
        if not response.ok or not response.access_token:
            logger.warning(
                f"Token request (reason=transport) returned no token (HTTP {response.status}), retrying with reason=init"
            )
            response = await self.web_player.request_token({**params, "reason": "init"})

        if not response.ok or not response.access_token:
            raise TokenAcquisitionFailed(
                "Unable to fetch access token after retry",
                details=f"HTTP {response.status}: {_error_summary(response)}",
            )
        return self._build_token(response)

    def _build_token(self, response: TokenResponse) -> InternalToken:
        expires_ms = response.data.get("accessTokenExpirationTimestampMs")
        if isinstance(expires_ms, (int, float)) and not isinstance(expires_ms, bool) and expires_ms > 0:
            expires_at = int(expires_ms // 1000)
        else:
            expires_at = int(self.clock()) + FALLBACK_LIFETIME
        return InternalToken(
            access_token=response.access_token,
            expires_at=expires_at,
            client_id=response.data.get("clientId") or None,
        )

    async def get_recommend_song(self, track_id: str) -> Dict[str, Any]:
        token = await self.get_token()
        return await self.web_player.get_recommend_song(token.access_token, track_id)

    async def get_lyrics(self, track_id: str) -> Dict[str, Any]:
        token = await self.get_token()
        return await self.web_player.get_lyrics(token.access_token, track_id)


def _error_summary(response: TokenResponse) -> str:
    data = response.data
    if "error" in data or "message" in data:
        return f"{data.get('error', '')} {data.get('message', '')}".strip()
    return "no accessToken in response"
