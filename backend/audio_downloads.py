import hashlib
import logging
import os
import re
import shutil
import tempfile
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException
from mutagen.id3 import COMM, ID3, TALB, TIT2, TPE1, TXXX
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

import settings
from mentions import MentionCandidate, mention_key
from ytdlp_support import ffmpeg_available, info_opts, yt_dlp_cookiefile

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = {"mp3", "m4a"}
DEFAULT_OUTPUT_FORMAT = "mp3"
AUDIO_EXTENSIONS = (".mp3", ".m4a", ".opus", ".webm")
MEDIA_TYPES = {".mp3": "audio/mpeg", ".m4a": "audio/mp4", ".opus": "audio/ogg", ".webm": "audio/ogg"}

DOWNLOAD_JOBS: dict[str, dict] = {}
DOWNLOAD_JOBS_LOCK = threading.Lock()


@dataclass
class TrackRequest:
    query: str
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    track_id: Optional[str] = None
    youtube_url: Optional[str] = None
    youtube_id: Optional[str] = None
    channel: Optional[str] = None
    duration_seconds: Optional[int] = None

    @classmethod
    def from_mention(cls, mention: MentionCandidate) -> "TrackRequest":
        return cls(query=f"{mention.artist} {mention.title}", title=mention.title, artist=mention.artist)


def media_type_for(filename: str) -> str:
    return MEDIA_TYPES.get(os.path.splitext(filename)[1].lower(), "application/octet-stream")


def _normalize_text(value: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]+", " ", (value or "").lower()).strip()


def score_youtube_entry(entry: dict, track: TrackRequest) -> int:
    title = _normalize_text(entry.get("title"))
    channel = _normalize_text(entry.get("channel") or entry.get("uploader"))
    full_text = f" {title} {channel} "
    score = 0

    for bad in ["live", "remix", "slowed", "sped up", "karaoke", "8d", "cover", "reaction"]:
        if f" {bad} " in full_text:
            score -= 8

    for good in ["official", "topic", "auto generated by youtube"]:
        if f" {good} " in full_text:
            score += 6

    for token in [x for x in _normalize_text(track.query).split() if len(x) > 2]:
        if token in title:
            score += 2

    if track.artist and _normalize_text(track.artist) in full_text:
        score += 8
    if track.duration_seconds and entry.get("duration"):
        diff = abs(int(entry["duration"]) - int(track.duration_seconds))
        if diff <= 5:
            score += 8
        elif diff > 45:
            score -= 6

    return score


def _populate_youtube_match(track: TrackRequest, count: int = 10) -> TrackRequest:
    try:
        with YoutubeDL(info_opts()) as ydl:
            result = ydl.extract_info(f"ytsearch{count}:{track.query}", download=False)
    except DownloadError as exc:
        raise HTTPException(status_code=502, detail=f"YouTube search failed: {exc}")
    entries = [e for e in (result or {}).get("entries") or [] if isinstance(e, dict)]
    if not entries:
        raise HTTPException(status_code=404, detail=f"No YouTube match found for {track.query!r}")

    best = max(entries, key=lambda item: score_youtube_entry(item, track))
    track.youtube_url = best.get("webpage_url") or best.get("url")
    track.youtube_id = best.get("id")
    track.channel = best.get("channel") or best.get("uploader")
    track.duration_seconds = track.duration_seconds or best.get("duration")
    return track


def _yt_dlp_opts(fmt: Optional[str], output_format: str, outdir: str) -> dict:
    opts = {
        "outtmpl": os.path.join(outdir, "%(id)s.%(ext)s"),
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "retries": 5,
        "fragment_retries": 5,
        "socket_timeout": 15,
        "format": fmt or "bestaudio/best",
    }
    if output_format == "mp3":
        opts["postprocessors"] = [
            {"key": "FFmpegExtractAudio", "preferredcodec": "mp3", "preferredquality": "0"},
        ]

    cookiefile = yt_dlp_cookiefile()
    if cookiefile:
        opts["cookiefile"] = cookiefile
    return opts


def _format_candidates(output_format: str) -> list[Optional[str]]:
    if output_format == "m4a":
        return ["bestaudio[ext=m4a]/bestaudio", "bestaudio/best", None]
    return ["bestaudio[ext=m4a]/bestaudio[ext=webm]/bestaudio/best", "bestaudio/best", "best"]


def _find_generated_audio(tmpdir: str, source_id: Optional[str], output_format: str) -> Optional[str]:
    if source_id:
        by_id = os.path.join(tmpdir, f"{source_id}.{output_format}")
        if os.path.exists(by_id):
            return by_id
    for name in sorted(os.listdir(tmpdir)):
        if name.lower().endswith(AUDIO_EXTENSIONS):
            return os.path.join(tmpdir, name)
    return None


def _download_audio(track: TrackRequest, tmpdir: str, output_format: str) -> str:
    if not track.youtube_url:
        _populate_youtube_match(track)

    last_error = None
    for fmt in _format_candidates(output_format):
        try:
            with YoutubeDL(_yt_dlp_opts(fmt, output_format, tmpdir)) as ydl:
                info = ydl.extract_info(str(track.youtube_url), download=True)
        except DownloadError as exc:
            last_error = exc
            continue
        source_id = (info or {}).get("id") or track.youtube_id
        file_path = _find_generated_audio(tmpdir, source_id, output_format)
        if file_path:
            return file_path

    detail = "YouTube download failed"
    if last_error:
        detail = f"YouTube download failed: {last_error}"
    raise HTTPException(status_code=502, detail=detail)


def _embed_metadata(file_path: str, track: TrackRequest):
    ext = os.path.splitext(file_path)[1].lower()
    if ext == ".mp3":
        audio = MP3(file_path, ID3=ID3)
        if audio.tags is None:
            audio.add_tags()
        if track.title:
            audio.tags.add(TIT2(encoding=3, text=track.title))
        if track.artist:
            audio.tags.add(TPE1(encoding=3, text=track.artist))
        if track.album:
            audio.tags.add(TALB(encoding=3, text=track.album))
        if track.youtube_url:
            audio.tags.add(COMM(encoding=3, desc="Source", text=track.youtube_url))
        if track.track_id:
            audio.tags.add(TXXX(encoding=3, desc="Spotify ID", text=track.track_id))
        audio.save()
    elif ext == ".m4a":
        audio = MP4(file_path)
        if track.title:
            audio["\xa9nam"] = [track.title]
        if track.artist:
            audio["\xa9ART"] = [track.artist]
        if track.album:
            audio["\xa9alb"] = [track.album]
        if track.youtube_url:
            audio["\xa9cmt"] = [track.youtube_url]
        audio.save()


def safe_filename(track: TrackRequest) -> str:
    base = track.title or track.query
    if track.artist and track.title:
        base = f"{track.artist} - {track.title}"
    cleaned = re.sub(r"[^a-zA-Z0-9 _\-\.]+", "", base).strip(" .")
    # Mostly non-Latin names would collapse to the same stub; keep them apart.
    if sum(c.isalnum() for c in cleaned) * 2 < sum(c.isalnum() for c in base):
        digest = hashlib.sha1(mention_key(track.artist or "", track.title or track.query).encode("utf-8")).hexdigest()
        cleaned = f"{cleaned.strip(' .-_') or 'track'}-{digest[:10]}"
    base = cleaned or "download"
    if track.track_id:
        prefix = re.sub(r"[^a-zA-Z0-9]+", "", track.track_id)
        if prefix:
            base = f"{prefix}_{base}"
    return base


def download_track(track: TrackRequest, output_format: str = DEFAULT_OUTPUT_FORMAT) -> dict:
    if output_format not in OUTPUT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {output_format}")
    if output_format == "mp3" and not ffmpeg_available():
        raise HTTPException(status_code=503, detail="ffmpeg is required for MP3 downloads")

    os.makedirs(settings.DOWNLOAD_DIR, exist_ok=True)
    with tempfile.TemporaryDirectory() as tmpdir:
        file_path = _download_audio(track, tmpdir, output_format)
        _embed_metadata(file_path, track)
        ext = os.path.splitext(file_path)[1].lower()
        filename = safe_filename(track) + ext
        final_path = os.path.join(settings.DOWNLOAD_DIR, filename)
        partial_path = f"{final_path}.{uuid.uuid4().hex}.part"
        shutil.copy2(file_path, partial_path)
        os.replace(partial_path, final_path)

    size = os.path.getsize(final_path)
    logger.info("Downloaded %r to %s (%d bytes)", track.query, filename, size)
    return {"success": True, "filename": filename, "size": size, "url": f"/api/downloads/{filename}"}


def list_downloads() -> list[dict]:
    if not os.path.isdir(settings.DOWNLOAD_DIR):
        return []
    files = []
    for name in os.listdir(settings.DOWNLOAD_DIR):
        path = os.path.join(settings.DOWNLOAD_DIR, name)
        if not name.lower().endswith(AUDIO_EXTENSIONS) or not os.path.isfile(path):
            continue
        stat = os.stat(path)
        files.append(
            {
                "filename": name,
                "size": stat.st_size,
                "url": f"/api/downloads/{name}",
                "modified": int(stat.st_mtime),
            }
        )
    return sorted(files, key=lambda item: (-item["modified"], item["filename"]))


def resolve_download_path(filename: str) -> str:
    if not filename or "/" in filename or "\\" in filename or filename in {".", ".."}:
        raise HTTPException(status_code=400, detail="Invalid filename")
    root = os.path.realpath(settings.DOWNLOAD_DIR)
    path = os.path.realpath(os.path.join(root, filename))
    if os.path.dirname(path) != root:
        raise HTTPException(status_code=400, detail="Invalid filename")
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Download not found")
    return path


def delete_download(filename: str):
    path = resolve_download_path(filename)
    os.remove(path)
    logger.info("Deleted download %s", filename)


def _set_job(job_id: str, updates: dict):
    with DOWNLOAD_JOBS_LOCK:
        if job_id not in DOWNLOAD_JOBS:
            return
        DOWNLOAD_JOBS[job_id].update(updates)


def _append_job_file(job_id: str, file_entry: dict):
    with DOWNLOAD_JOBS_LOCK:
        if job_id not in DOWNLOAD_JOBS:
            return
        DOWNLOAD_JOBS[job_id]["files"].append(file_entry)


def _run_mentions_job(job_id: str, mentions: list[MentionCandidate], output_format: str):
    _set_job(job_id, {"status": "running"})
    success_count = 0
    failed_count = 0
    workers = min(settings.DOWNLOAD_WORKERS, max(len(mentions), 1))

    with ThreadPoolExecutor(max_workers=workers) as executor:
        job_map = {
            executor.submit(download_track, TrackRequest.from_mention(mention), output_format): mention
            for mention in mentions
        }
        for future in as_completed(job_map):
            mention = job_map[future]
            try:
                file_entry = future.result()
            except Exception:
                logger.exception("Download job %s failed for %s", job_id, mention.key)
                failed_count += 1
            else:
                _append_job_file(job_id, {**file_entry, **mention.as_wire()})
                success_count += 1
            _set_job(job_id, {"done": success_count, "failed": failed_count})

    if success_count:
        _set_job(job_id, {"status": "done"})
    else:
        _set_job(job_id, {"status": "failed", "error": "No tracks were downloaded"})


def start_mentions_job(mentions: list[MentionCandidate], output_format: str = DEFAULT_OUTPUT_FORMAT) -> str:
    if output_format not in OUTPUT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {output_format}")

    job_id = str(uuid.uuid4())
    with DOWNLOAD_JOBS_LOCK:
        DOWNLOAD_JOBS[job_id] = {
            "id": job_id,
            "status": "queued",
            "total": len(mentions),
            "done": 0,
            "failed": 0,
            "error": None,
            "files": [],
            "output_format": output_format,
            "created_at": int(time.time()),
        }

    thread = threading.Thread(target=_run_mentions_job, args=(job_id, mentions, output_format), daemon=True)
    thread.start()
    return job_id


def get_job(job_id: str) -> dict:
    with DOWNLOAD_JOBS_LOCK:
        job = DOWNLOAD_JOBS.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Download job not found")
        return {**job, "files": list(job["files"])}
