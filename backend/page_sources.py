"""Resolve a pasted URL to raw text: YouTube captions or a web page."""

import html
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup
from fastapi import HTTPException
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

import settings
from ytdlp_support import info_opts

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; MusicFinderBot/1.0)"
YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}
YOUTUBE_PATH_PREFIXES = ("shorts", "embed", "live", "v")
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,20}$")
VTT_TAG_RE = re.compile(r"<[^>]+>")
STRIPPED_TAGS = ["script", "style", "noscript", "template"]
NO_CAPTIONS_HINT = "The video may not have captions enabled."


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()[: settings.MAX_SOURCE_CHARS]


def extract_video_id(url: str) -> Optional[str]:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()

    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in YOUTUBE_PATH_PREFIXES:
                candidate = parts[1]

    if candidate and VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def is_web_url(url: str) -> bool:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def preview(text: str) -> str:
    if len(text) <= settings.PREVIEW_CHARS:
        return text
    return text[: settings.PREVIEW_CHARS] + "..."


def _pick_language(tracks: dict) -> Optional[str]:
    langs = [lang for lang in tracks if lang != "live_chat" and tracks.get(lang)]
    if not langs:
        return None
    for preferred in settings.TRANSCRIPT_LANGS:
        if preferred in langs:
            return preferred
    for lang in langs:
        if lang.startswith("en"):
            return lang
    for lang in langs:
        if lang.endswith("-orig"):
            return lang
    return langs[0]


def pick_caption_track(info: dict) -> Optional[dict]:
    # Uploaded subtitles beat automatic captions; json3 beats vtt.
    for field in ("subtitles", "automatic_captions"):
        tracks = info.get(field) or {}
        lang = _pick_language(tracks)
        if not lang:
            continue
        formats = [fmt for fmt in tracks[lang] if isinstance(fmt, dict) and fmt.get("url")]
        for ext in ("json3", "vtt"):
            for fmt in formats:
                if fmt.get("ext") == ext:
                    return fmt
    return None


def json3_text(payload: dict) -> str:
    lines = []
    for event in payload.get("events") or []:
        line = "".join(str(seg.get("utf8") or "") for seg in event.get("segs") or [])
        if line.strip():
            lines.append(line.strip())
    return " ".join(lines)


def vtt_text(raw: str) -> str:
    lines: list[str] = []
    previous = None
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith(("WEBVTT", "Kind:", "Language:", "NOTE")):
            continue
        if "-->" in line or line.isdigit():
            continue
        line = html.unescape(VTT_TAG_RE.sub("", line)).strip()
        # Rolling auto-captions repeat each line in consecutive cues.
        if line and line != previous:
            lines.append(line)
            previous = line
    return " ".join(lines)


def fetch_transcript(video_id: str) -> str:
    url = f"https://www.youtube.com/watch?v={video_id}"
    try:
        with YoutubeDL(info_opts()) as ydl:
            info = ydl.extract_info(url, download=False)
    except DownloadError as exc:
        raise HTTPException(status_code=502, detail=f"Could not fetch transcript: {exc}. {NO_CAPTIONS_HINT}")

    track = pick_caption_track(info or {})
    if not track:
        raise HTTPException(status_code=404, detail=f"Could not fetch transcript: no captions found. {NO_CAPTIONS_HINT}")

    try:
        res = requests.get(track["url"], timeout=15, headers={"User-Agent": USER_AGENT})
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"Could not fetch transcript: {exc}")
    if res.status_code != 200:
        raise HTTPException(status_code=502, detail=f"Could not fetch transcript: HTTP {res.status_code}")

    if track.get("ext") == "json3":
        try:
            text = json3_text(res.json())
        except ValueError:
            raise HTTPException(status_code=502, detail="Could not fetch transcript: malformed caption data")
    else:
        text = vtt_text(res.text)

    text = _clean_text(text)
    if not text:
        raise HTTPException(status_code=404, detail=f"Could not fetch transcript: captions are empty. {NO_CAPTIONS_HINT}")
    logger.info("Fetched %d transcript chars for video %s", len(text), video_id)
    return text


def html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(STRIPPED_TAGS):
        tag.decompose()
    return _clean_text(soup.get_text(" "))


def fetch_page_text(url: str) -> str:
    try:
        r = requests.get(url, timeout=15, headers={"User-Agent": USER_AGENT})
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=f"Could not fetch page: {exc}")
    if r.status_code >= 400:
        raise HTTPException(status_code=502, detail=f"Could not fetch page: HTTP {r.status_code}")

    text = html_to_text(r.text)
    logger.info("Fetched %d page chars from %s", len(text), url)
    return text
