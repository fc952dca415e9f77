import logging
from typing import Optional
from urllib.parse import urlparse

import requests
from fastapi import HTTPException

from mentions import MentionCandidate

logger = logging.getLogger(__name__)

SPOTIFY_API = "https://api.spotify.com/v1"
TRACKS_PER_REQUEST = 100


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


def _raise_for_spotify(res: requests.Response, action: str):
    if res.status_code == 401:
        raise HTTPException(status_code=401, detail="Spotify token was rejected")
    if res.status_code not in {200, 201}:
        raise HTTPException(status_code=502, detail=f"Spotify API {action} failed ({res.status_code})")


def _spotify_request(method: str, token: str, path: str, action: str, **kwargs) -> dict:
    try:
        res = requests.request(method, f"{SPOTIFY_API}{path}", headers=_headers(token), timeout=20, **kwargs)
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"Spotify API {action} failed: {exc}")
    _raise_for_spotify(res, action)
    try:
        return res.json()
    except ValueError:
        return {}


def _search(token: str, query: str, kind: str) -> list[dict]:
    try:
        res = requests.get(
            f"{SPOTIFY_API}/search",
            params={"q": query, "type": kind, "limit": 1},
            headers=_headers(token),
            timeout=20,
        )
    except requests.RequestException as exc:
        logger.warning("Spotify search for %r failed: %s", query, exc)
        return []
    if res.status_code == 401:
        _raise_for_spotify(res, "search")
    if res.status_code != 200:
        logger.warning("Spotify search for %r returned %s", query, res.status_code)
        return []
    try:
        payload = res.json()
    except ValueError:
        return []
    section = payload.get(f"{kind}s") if isinstance(payload, dict) else None
    items = section.get("items") if isinstance(section, dict) else None
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _first_album_track_uri(token: str, album_id: str) -> Optional[str]:
    try:
        res = requests.get(
            f"{SPOTIFY_API}/albums/{album_id}/tracks",
            params={"limit": 1},
            headers=_headers(token),
            timeout=20,
        )
    except requests.RequestException:
        return None
    if res.status_code != 200:
        return None
    try:
        payload = res.json()
    except ValueError:
        return None
    items = payload.get("items") if isinstance(payload, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        return None
    return items[0].get("uri")


def find_track_uri(token: str, mention: MentionCandidate) -> Optional[str]:
    albums = _search(token, f"album:{mention.title} artist:{mention.artist}", "album")
    if albums and albums[0].get("id"):
        uri = _first_album_track_uri(token, albums[0]["id"])
        if uri:
            return uri

    # The title may name a track rather than an album.
    tracks = _search(token, f"track:{mention.title} artist:{mention.artist}", "track")
    if tracks:
        return tracks[0].get("uri")
    return None


def playlist_name_for(source_url: str) -> str:
    host = (urlparse(source_url or "").hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return f"MusicFinder: Parsed from {host or 'text'}"


def create_playlist_from_mentions(
    token: str, mentions: list[MentionCandidate], source_url: str, name: Optional[str] = None
) -> dict:
    user = _spotify_request("GET", token, "/me", "profile")
    user_id = user.get("id")
    if not user_id:
        raise HTTPException(status_code=502, detail="Spotify API profile returned no user id")

    track_uris: list[str] = []
    missing: list[dict[str, str]] = []
    for mention in mentions:
        uri = find_track_uri(token, mention)
        if uri:
            track_uris.append(uri)
        else:
            missing.append(mention.as_wire())
    track_uris = list(dict.fromkeys(track_uris))

    playlist_name = (name or "").strip() or playlist_name_for(source_url)
    playlist = _spotify_request(
        "POST",
        token,
        f"/users/{user_id}/playlists",
        "playlist creation",
        json={
            "name": playlist_name,
            "description": f"Albums mentioned in {source_url}, parsed by MusicFinder",
            "public": False,
        },
    )
    playlist_id = playlist.get("id")
    if not playlist_id:
        raise HTTPException(status_code=502, detail="Spotify API playlist creation returned no id")

    for start in range(0, len(track_uris), TRACKS_PER_REQUEST):
        _spotify_request(
            "POST",
            token,
            f"/playlists/{playlist_id}/tracks",
            "add tracks",
            json={"uris": track_uris[start : start + TRACKS_PER_REQUEST]},
        )

    logger.info(
        "Created playlist %s with %d tracks (%d mentions unresolved)", playlist_id, len(track_uris), len(missing)
    )
    return {
        "playlist_id": playlist_id,
        "url": (playlist.get("external_urls") or {}).get("spotify"),
        "name": playlist_name,
        "track_count": len(track_uris),
        "missing": missing,
    }
