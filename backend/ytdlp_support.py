import base64
import binascii
import os
import shutil
import tempfile
import threading
from typing import Optional

from yt_dlp.version import __version__ as YTDLP_VERSION

YTDLP_COOKIEFILE_CACHE: dict[str, Optional[str]] = {"path": None}
YTDLP_COOKIEFILE_LOCK = threading.Lock()


def yt_dlp_cookiefile() -> Optional[str]:
    direct = os.getenv("YTDLP_COOKIES", "").strip()
    if direct and os.path.exists(direct):
        return direct

    encoded = os.getenv("YTDLP_COOKIES_B64", "").strip()
    if not encoded:
        return None

    with YTDLP_COOKIEFILE_LOCK:
        cached = YTDLP_COOKIEFILE_CACHE.get("path")
        if cached and os.path.exists(cached):
            return cached

        # Deploy panels sometimes wrap env values in stray punctuation or line breaks.
        clean = encoded.strip("%").replace("\n", "").replace("\r", "")
        try:
            text = base64.b64decode(clean, validate=False).decode("utf-8")
        except (binascii.Error, ValueError):
            return None

        if "# Netscape HTTP Cookie File" not in text:
            return None

        fd, path = tempfile.mkstemp(prefix="musicfinder-cookies-", suffix=".txt")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.chmod(path, 0o600)
        YTDLP_COOKIEFILE_CACHE["path"] = path
        return path


def info_opts() -> dict:
    opts = {
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "extract_flat": False,
        "skip_download": True,
    }
    cookiefile = yt_dlp_cookiefile()
    if cookiefile:
        opts["cookiefile"] = cookiefile
    return opts


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def ytdlp_status() -> dict:
    has_ffmpeg = ffmpeg_available()
    return {"available": has_ffmpeg, "version": YTDLP_VERSION, "ffmpeg": has_ffmpeg}
