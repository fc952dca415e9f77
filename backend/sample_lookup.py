"""Sample-detection lookups backed by a WhoSampled API on RapidAPI.

Live answers are cached on disk as JSON, one file per (artist, track).
Without ``RAPIDAPI_KEY`` the lookup returns fixed demo data flagged with
``"mock": true`` so the Sample Lab stays usable offline.
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from typing import Any, Optional

import requests
from fastapi import HTTPException

import settings
from mentions import mention_key

logger = logging.getLogger(__name__)

DEMO_SAMPLES = [
    {"type": "sample", "title": "Amen, Brother", "artist": "The Winstons", "year": 1969},
    {"type": "sample", "title": "Funky Drummer", "artist": "James Brown", "year": 1970},
    {"type": "interpolation", "title": "Impeach the President", "artist": "The Honey Drippers", "year": 1973},
]


def _api_key() -> Optional[str]:
    return os.getenv("RAPIDAPI_KEY", "").strip() or None


def _cache_path(artist: str, track: str) -> str:
    digest = hashlib.sha1(mention_key(artist, track).encode("utf-8")).hexdigest()
    return os.path.join(settings.SAMPLE_CACHE_DIR, f"{digest}.json")


def _read_cache(path: str) -> Optional[list[dict]]:
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable sample cache %s: %s", path, exc)
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("samples"), list):
        return None
    try:
        cached_at = float(payload.get("cached_at") or 0)
    except (TypeError, ValueError):
        return None
    if time.time() - cached_at > settings.SAMPLE_CACHE_TTL:
        return None
    return payload["samples"]


def _write_cache(path: str, samples: list[dict]):
    """Best effort: a cache that cannot be written never fails the lookup."""
    tmp_path = None
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"cached_at": time.time(), "samples": samples}, f)
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as exc:
        logger.warning("Could not write sample cache %s: %s", path, exc)
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)


def _year(value: Any) -> Optional[int]:
    try:
        return int(str(value)[:4])
    except (TypeError, ValueError):
        return None


def parse_sample_entries(payload: Any) -> list[dict]:
    if isinstance(payload, dict):
        entries = payload.get("samples") or payload.get("results") or []
    elif isinstance(payload, list):
        entries = payload
    else:
        entries = []

    samples = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        title = entry.get("title") or entry.get("track") or entry.get("name")
        if not title:
            continue
        artist = entry.get("artist")
        if isinstance(artist, dict):
            artist = artist.get("name")
        samples.append(
            {
                "type": entry.get("type") or entry.get("relation") or "sample",
                "title": str(title),
                "artist": str(artist) if artist else None,
                "year": _year(entry.get("year") or entry.get("release_date")),
            }
        )
    return samples


def _fetch_live(artist: str, track: str, api_key: str) -> list[dict]:
    host = settings.RAPIDAPI_WHOSAMPLED_HOST
    try:
        res = requests.get(
            f"https://{host}/search",
            params={"artist": artist, "track": track},
            headers={"X-RapidAPI-Key": api_key, "X-RapidAPI-Host": host},
            timeout=15,
        )
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"Sample lookup failed: {exc}")
    if res.status_code != 200:
        raise HTTPException(status_code=502, detail=f"Sample lookup failed ({res.status_code})")
    try:
        return parse_sample_entries(res.json())
    except ValueError:
        raise HTTPException(status_code=502, detail="Sample lookup returned malformed data")


def lookup_samples(artist: str, track: str) -> dict:
    artist = (artist or "").strip()
    track = (track or "").strip()
    if not artist or not track:
        raise HTTPException(status_code=400, detail="Missing artist or track param")

    result = {"artist": artist, "track": track}
    api_key = _api_key()
    if not api_key:
        return {**result, "samples": [dict(s) for s in DEMO_SAMPLES], "mock": True, "cached": False}

    path = _cache_path(artist, track)
    cached = _read_cache(path)
    if cached is not None:
        return {**result, "samples": cached, "mock": False, "cached": True}

    samples = _fetch_live(artist, track, api_key)
    _write_cache(path, samples)
    logger.info("Sample lookup for %s found %d entries", mention_key(artist, track), len(samples))
    return {**result, "samples": samples, "mock": False, "cached": False}
