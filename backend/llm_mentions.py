import json
import logging
import os
from typing import Optional

import google.generativeai as genai

import settings
from mentions import MentionCandidate, dedupe_mentions

logger = logging.getLogger(__name__)

LLM_MAX_CHARS = 30_000

EXTRACTION_PROMPT = """You read text from a video transcript or a web page and list every
music release it mentions.

Return ONLY a JSON array. Each element is an object with two string fields:
  "artist": the performing artist
  "title": the album or track name
Skip anything where you cannot name both. Do not invent releases that are not
mentioned. Return [] when nothing is mentioned.

TEXT:
{text}
"""


def _api_key() -> Optional[str]:
    return os.getenv("GEMINI_API_KEY", "").strip() or None


def llm_available() -> bool:
    return _api_key() is not None


def parse_llm_response(raw: str) -> list[MentionCandidate]:
    # Models often wrap the array in Markdown fences or a sentence of prose.
    start, end = raw.find("["), raw.rfind("]")
    if start == -1 or end <= start:
        return []
    try:
        payload = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []

    pairs = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        artist = item.get("artist")
        title = item.get("title") or item.get("album")
        if isinstance(artist, str) and isinstance(title, str):
            pairs.append((artist, title))
    return dedupe_mentions(pairs)


def extract_mentions_llm(text: str) -> list[MentionCandidate]:
    """Ask Gemini for mentions in ``text``.

    Raises whatever the client raises; callers decide whether to fall back
    to the pattern extractor.
    """
    api_key = _api_key()
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is not configured")
    if not text:
        return []

    genai.configure(api_key=api_key)
    model = genai.GenerativeModel(settings.GEMINI_MODEL)
    response = model.generate_content(
        EXTRACTION_PROMPT.format(text=text[:LLM_MAX_CHARS]),
        generation_config={"temperature": 0.0, "max_output_tokens": 2048},
    )
    found = parse_llm_response(response.text or "")
    logger.info("LLM extraction with %s found %d mentions", settings.GEMINI_MODEL, len(found))
    return found
