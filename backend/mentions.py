"""Recover (artist, title) mentions from free text.

A small ordered battery of surface patterns is run over the whole input.
Each pattern knows which capture group holds the artist and which holds
the title; results are trimmed and deduplicated by a case-insensitive
``artist::title`` key, first occurrence wins.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional

QUOTES = "\"'\u201c\u201d\u2018\u2019"
APOSTROPHES = "'\u2019"
DASHES = "\\-\u2010\u2012\u2013\u2014\u2015\u2212"
SENTENCE_STOPS = "\n,.:;!?"
# ASCII capitals plus Latin-1 uppercase letters (without the multiplication sign).
CAPITALS = "A-Z\u00c0-\u00d6\u00d8-\u00de"
NAME_LETTERS = "A-Za-z\u00c0-\u00d6\u00d8-\u00f6\u00f8-\u024f"


class FieldOrder(Enum):
    TITLE_THEN_ARTIST = "title_then_artist"
    ARTIST_THEN_TITLE = "artist_then_title"


@dataclass(frozen=True)
class MentionCandidate:
    title: str
    artist: str

    @property
    def key(self) -> str:
        return mention_key(self.artist, self.title)

    def as_wire(self) -> dict[str, str]:
        return {"artist": self.artist, "album": self.title}


@dataclass(frozen=True)
class MentionPattern:
    name: str
    regex: re.Pattern
    order: FieldOrder

    def pairs(self, text: str) -> Iterator[tuple[str, str]]:
        """Yield raw ``(artist, title)`` pairs for every match in ``text``."""
        for match in self.regex.finditer(text):
            first, second = match.group(1), match.group(2)
            if self.order is FieldOrder.TITLE_THEN_ARTIST:
                yield second, first
            else:
                yield first, second


def _quoted(max_len: int) -> str:
    return f"[{QUOTES}]([^{QUOTES}]{{3,{max_len}}})[{QUOTES}]"


def _capitalized_run(max_len: int, stop_at_possessive: bool = False) -> str:
    char = f"[^{SENTENCE_STOPS}]"
    if stop_at_possessive:
        char = rf"(?![{APOSTROPHES}]s\b){char}"
    return rf"([{CAPITALS}](?:{char}){{1,{max_len - 1}}})"


def _name_run(max_len: int) -> str:
    return f"([{CAPITALS}][{NAME_LETTERS} ]{{1,{max_len - 1}}})"


PATTERNS: tuple[MentionPattern, ...] = (
    MentionPattern(
        name="quoted_by",
        regex=re.compile(_quoted(80) + r"\s+(?i:by)\s+" + _capitalized_run(60)),
        order=FieldOrder.TITLE_THEN_ARTIST,
    ),
    MentionPattern(
        name="artist_dash_quoted",
        regex=re.compile(_capitalized_run(50) + rf"\s*[{DASHES}]\s*" + _quoted(80)),
        order=FieldOrder.ARTIST_THEN_TITLE,
    ),
    MentionPattern(
        name="possessive_quoted",
        regex=re.compile(_name_run(50) + rf"[{APOSTROPHES}]s\s+" + _quoted(80)),
        order=FieldOrder.ARTIST_THEN_TITLE,
    ),
    MentionPattern(
        name="off_from_on_album",
        regex=re.compile(
            _quoted(60) + r"\s+(?i:off|from|on)(?:\s+(?i:the\s+album|album|the))??\s+"
            + _capitalized_run(60, stop_at_possessive=True)
        ),
        order=FieldOrder.TITLE_THEN_ARTIST,
    ),
)


def mention_key(artist: str, title: str) -> str:
    return f"{artist.lower()}::{title.lower()}"


def dedupe_mentions(pairs: Iterable[tuple[Optional[str], Optional[str]]]) -> list[MentionCandidate]:
    """Trim ``(artist, title)`` pairs, drop blanks and repeats, keep first-seen order."""
    found: list[MentionCandidate] = []
    seen: set[str] = set()
    for raw_artist, raw_title in pairs:
        artist = (raw_artist or "").strip()
        title = (raw_title or "").strip()
        if not artist or not title:
            continue
        key = mention_key(artist, title)
        if key in seen:
            continue
        seen.add(key)
        found.append(MentionCandidate(title=title, artist=artist))
    return found


def extract_mentions(text: Optional[str]) -> list[MentionCandidate]:
    if not text:
        return []
    return dedupe_mentions(pair for pattern in PATTERNS for pair in pattern.pairs(text))
