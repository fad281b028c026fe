import logging
from typing import Any, Dict, List, Optional

import requests
import spotipy
from spotipy.exceptions import SpotifyException

from spotbridge.errors import UpstreamError

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 15
PLAYLIST_LIMIT = 50
PLAYLIST_TRACK_LIMIT = 100


def create_client(token: str, timeout: float = 20.0) -> spotipy.Spotify:
    return spotipy.Spotify(auth=token, requests_timeout=timeout, retries=0)


def map_track(track: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Trim a Spotify track object down to the fields the player UI uses"""
    if not track:
        return None

    album = track.get("album")
    return {
        "id": track.get("id"),
        "uri": track.get("uri"),
        "name": track.get("name"),
        "duration_ms": track.get("duration_ms"),
        "album": {
            "id": album.get("id"),
            "name": album.get("name"),
            "images": album.get("images"),
        } if album else None,
        "artists": [
            {"id": artist.get("id"), "name": artist.get("name")}
            for artist in track.get("artists") or []
        ],
    }


def _call(description: str, func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except SpotifyException as e:
        logger.warning(f"{description} failed: {e.http_status} {e.msg}")
        raise UpstreamError(f"Spotify API error: {description} failed", status=e.http_status, body=str(e.msg)) from e
    except requests.RequestException as e:
        raise UpstreamError(f"Spotify API error: {description} failed: {e}") from e


def get_my_playlists(sp: spotipy.Spotify) -> List[Dict[str, Any]]:
    result = _call("fetching playlists", sp.current_user_playlists, limit=PLAYLIST_LIMIT)
    return result.get("items", []) if result else []


def get_playlist_tracks(sp: spotipy.Spotify, playlist_id: str) -> Dict[str, Any]:
    result = _call("fetching playlist tracks", sp.playlist_items, playlist_id, limit=PLAYLIST_TRACK_LIMIT)
    items = result.get("items", []) if result else []
    tracks = [map_track(item.get("track")) for item in items if item]
    return {"tracks": [t for t in tracks if t]}


def search_tracks(sp: spotipy.Spotify, query: str) -> List[Dict[str, Any]]:
    result = _call("searching tracks", sp.search, q=query, type="track", limit=SEARCH_LIMIT)
    items = ((result or {}).get("tracks") or {}).get("items") or []
    return [t for t in (map_track(item) for item in items) if t]


def check_saved(sp: spotipy.Spotify, ids: List[str]) -> List[bool]:
    return _call("checking saved tracks", sp.current_user_saved_tracks_contains, tracks=ids)


def save_tracks(sp: spotipy.Spotify, ids: List[str]) -> None:
    _call("saving tracks", sp.current_user_saved_tracks_add, tracks=ids)


def remove_tracks(sp: spotipy.Spotify, ids: List[str]) -> None:
    _call("removing tracks", sp.current_user_saved_tracks_delete, tracks=ids)
