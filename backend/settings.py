import os
from typing import Optional

APP_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_DIR = os.path.abspath(os.path.join(APP_DIR, ".."))
FRONTEND_DIST = os.path.join(PROJECT_DIR, "frontend", "dist")


def env_int(name: str, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        value = default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Fetched text is capped before extraction so pattern matching stays bounded.
MAX_SOURCE_CHARS = env_int("MAX_SOURCE_CHARS", 200_000, minimum=1_000)
PREVIEW_CHARS = 500
TRANSCRIPT_LANGS = env_list("TRANSCRIPT_LANGS", "en,en-US,en-GB")

DOWNLOAD_DIR = os.path.abspath(os.getenv("DOWNLOAD_DIR") or os.path.join(PROJECT_DIR, "downloads"))
DOWNLOAD_WORKERS = env_int("DOWNLOAD_WORKERS", 3, minimum=1, maximum=8)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")

RAPIDAPI_WHOSAMPLED_HOST = os.getenv("RAPIDAPI_WHOSAMPLED_HOST", "whosampled-api.p.rapidapi.com")
SAMPLE_CACHE_DIR = os.path.abspath(
    os.getenv("SAMPLE_CACHE_DIR") or os.path.join(PROJECT_DIR, ".cache", "samples")
)
SAMPLE_CACHE_TTL = env_int("SAMPLE_CACHE_TTL", 7 * 24 * 3600, minimum=0)
