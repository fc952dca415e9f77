import logging
import os
from typing import Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

import settings
from audio_downloads import (
    DEFAULT_OUTPUT_FORMAT,
    TrackRequest,
    delete_download,
    download_track,
    get_job,
    list_downloads,
    media_type_for,
    resolve_download_path,
    start_mentions_job,
)
from llm_mentions import extract_mentions_llm, llm_available
from mentions import MentionCandidate, dedupe_mentions, extract_mentions
from page_sources import extract_video_id, fetch_page_text, fetch_transcript, is_web_url, preview
from sample_lookup import lookup_samples
from spotify_playlists import create_playlist_from_mentions
from ytdlp_support import ytdlp_status

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

EXTRACTION_MODES = {"patterns", "llm"}

app = FastAPI(title="MusicFinder API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _find_mentions(text: str, mode: str) -> tuple[list[MentionCandidate], str]:
    if mode == "llm":
        try:
            return extract_mentions_llm(text), "llm"
        except Exception as exc:
            logger.warning("LLM extraction failed, falling back to patterns: %s", exc)
    return extract_mentions(text), "patterns"


def _mentions_from_payload(payload: dict) -> list[MentionCandidate]:
    items = payload.get("albums")
    if not isinstance(items, list):
        return []
    return dedupe_mentions(
        (str(item.get("artist") or ""), str(item.get("album") or item.get("title") or ""))
        for item in items
        if isinstance(item, dict)
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@app.get("/api/transcript")
def transcript(url: Optional[str] = None, mode: str = "patterns"):
    url = (url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="Missing url param")
    if mode not in EXTRACTION_MODES:
        raise HTTPException(status_code=400, detail=f"Unsupported mode: {mode}")
    if mode == "llm" and not llm_available():
        raise HTTPException(status_code=503, detail="LLM extraction is not configured (GEMINI_API_KEY)")

    video_id = extract_video_id(url)
    if video_id:
        text = fetch_transcript(video_id)
        body = {"source": "youtube", "videoId": video_id}
    elif is_web_url(url):
        text = fetch_page_text(url)
        body = {"source": "webpage"}
    else:
        raise HTTPException(status_code=400, detail="Invalid url")

    mentions, extractor = _find_mentions(text, mode)
    logger.info("Found %d mentions in %s via %s", len(mentions), url, extractor)
    body.update(
        {
            "transcript": preview(text),
            "albums": [m.as_wire() for m in mentions],
            "extractor": extractor,
        }
    )
    return JSONResponse(body)


@app.post("/api/playlist")
def create_playlist(payload: dict, authorization: Optional[str] = Header(None)):
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Spotify token required")
    mentions = _mentions_from_payload(payload)
    if not mentions:
        raise HTTPException(status_code=400, detail="No albums to add")

    result = create_playlist_from_mentions(
        token, mentions, source_url=str(payload.get("url") or ""), name=payload.get("name")
    )
    return JSONResponse(result)


@app.get("/api/ytdlp-status")
async def ytdlp_status_route():
    return ytdlp_status()


@app.post("/api/download")
def download(payload: dict):
    name = str(payload.get("trackName") or "").strip() or None
    artist = str(payload.get("artistName") or "").strip() or None
    query = str(payload.get("query") or "").strip() or " ".join(x for x in [artist, name] if x)
    if not query:
        raise HTTPException(status_code=400, detail="Missing query")

    track = TrackRequest(
        query=query,
        title=name,
        artist=artist,
        album=str(payload.get("albumName") or "").strip() or None,
        track_id=str(payload.get("trackId") or "").strip() or None,
    )
    result = download_track(track, output_format=str(payload.get("format") or DEFAULT_OUTPUT_FORMAT))
    return JSONResponse(result)


@app.get("/api/downloads")
def downloads():
    return JSONResponse(list_downloads())


@app.get("/api/downloads/{filename}")
def download_file(filename: str):
    path = resolve_download_path(filename)
    return FileResponse(path, filename=filename, media_type=media_type_for(filename))


@app.delete("/api/downloads/{filename}")
def remove_download(filename: str):
    delete_download(filename)
    return {"deleted": filename}


@app.post("/api/mentions/download")
def mentions_download(payload: dict):
    mentions = _mentions_from_payload(payload)
    if not mentions:
        raise HTTPException(status_code=400, detail="No albums to download")
    job_id = start_mentions_job(mentions, output_format=str(payload.get("format") or DEFAULT_OUTPUT_FORMAT))
    return JSONResponse({"job_id": job_id, "status": "queued"})


@app.get("/api/mentions/download/{job_id}")
async def mentions_download_status(job_id: str):
    job = get_job(job_id)
    return JSONResponse(
        {
            "id": job["id"],
            "status": job["status"],
            "total": job["total"],
            "done": job["done"],
            "failed": job["failed"],
            "error": job["error"],
            "output_format": job["output_format"],
            "files": [
                {
                    "filename": item["filename"],
                    "size": item["size"],
                    "url": item["url"],
                    "artist": item["artist"],
                    "album": item["album"],
                }
                for item in job["files"]
            ],
        }
    )


@app.get("/api/whosampled")
def whosampled(artist: Optional[str] = None, track: Optional[str] = None):
    return JSONResponse(lookup_samples(artist or "", track or ""))


@app.get("/api/health")
async def health():
    return {"ok": True}


if os.path.isdir(settings.FRONTEND_DIST):
    app.mount("/", StaticFiles(directory=settings.FRONTEND_DIST, html=True), name="static")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3001)
