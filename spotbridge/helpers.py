from typing import Any, Dict, Optional, Tuple


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) == 2 and parts[0] == "Bearer" and parts[1]:
        return parts[1]
    return None


def playlist_from_recommendation(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Pull (playlistUri, playlistId) out of a seed_to_playlist response"""
    media_items = payload.get("mediaItems") if isinstance(payload, dict) else None
    media_item = media_items[0] if isinstance(media_items, list) and media_items else None
    uri = media_item.get("uri") if isinstance(media_item, dict) else None
    if not isinstance(uri, str) or ":" not in uri:
        return None, None
    playlist_id = uri.split(":")[-1]
    return (uri, playlist_id) if playlist_id else (None, None)
