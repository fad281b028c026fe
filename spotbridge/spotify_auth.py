# spotify_auth.py
import logging
from typing import Any, Dict
from urllib.parse import urlencode

import requests

from spotbridge.config import Settings
from spotbridge.errors import UpstreamError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

SPOTIFY_SCOPES = [
    "ugc-image-upload",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "streaming",
    "app-remote-control",
    "user-read-email",
    "user-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-read-private",
    "playlist-modify-private",
    "user-library-modify",
    "user-library-read",
    "user-top-read",
    "user-read-playback-position",
    "user-read-recently-played",
    "user-follow-read",
    "user-follow-modify",
]


def build_authorize_url(settings: Settings, state: str = "") -> str:
    params = urlencode({
        "client_id": settings.client_id,
        "response_type": "code",
        "redirect_uri": settings.redirect_uri,
        "scope": " ".join(SPOTIFY_SCOPES),
        "state": state,
    })
    return f"{AUTHORIZE_URL}?{params}"


def _post_token(settings: Settings, data: Dict[str, str]) -> Dict[str, Any]:
    payload = {**data, "client_id": settings.client_id, "client_secret": settings.client_secret}
    try:
        resp = requests.post(TOKEN_URL, data=payload, timeout=settings.http_timeout)
    except requests.RequestException as e:
        raise UpstreamError(f"Token request failed: {e}") from e

    if resp.status_code != 200:
        raise UpstreamError(
            f"Spotify token endpoint returned {resp.status_code}", status=resp.status_code, body=resp.text
        )
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError("Spotify token endpoint returned malformed JSON", status=resp.status_code) from e


def exchange_code(settings: Settings, code: str) -> Dict[str, Any]:
    """Exchange an authorization code for access/refresh tokens"""
    token_data = _post_token(settings, {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.redirect_uri,
    })
    logger.info(f"Retrieved Spotify access token, expires in {token_data.get('expires_in')} s")
    return token_data


def refresh_access_token(settings: Settings, refresh_token: str) -> Dict[str, Any]:
    token_data = _post_token(settings, {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    })
    # Spotify omits refresh_token when it doesn't rotate it
    token_data.setdefault("refresh_token", refresh_token)
    return token_data
