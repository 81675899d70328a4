# ABOUTME: FastAPI server for conversation dialogue synthesis and video composition
# ABOUTME: Runs audio generation as background tasks; composition and export run in-request
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from fastapi import Body, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse

import store
from composer import DEFAULT_HEIGHT, DEFAULT_INTRO_SECS, DEFAULT_WIDTH, Asset, compose_video
from config import load_settings
from dialogue import AVAILABLE_EMOTIONS, AVAILABLE_TONES
from errors import (
    ConflictError,
    LingodinoError,
    NotFoundError,
    PreconditionError,
    StageError,
    StorageError,
    SynthesisError,
)
from export import build_production
from generation import COLLECTION, begin_generation, fail_interrupted, load_conversation, run_generation
from models import Conversation, ConversationParticipant, ConversationStatus
from render import FFmpegRenderer
from script_parser import parse_script
from storage import LocalObjectStorage
from tts_client import ElevenLabsClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("lingodino-media")
# httpx logs full request URLs at INFO, signed query strings included
logging.getLogger("httpx").setLevel(logging.WARNING)

MAX_UPLOAD_BYTES = 200 * 1024 * 1024  # 200 MB per asset
DOWNLOAD_TTL_SECS = 3600

settings = load_settings()
storage = LocalObjectStorage.from_settings(settings)

app = FastAPI(title="Lingodino Media API", version="0.1.0")

# Track running background tasks to prevent GC
_running_tasks: dict[str, asyncio.Task] = {}

ERROR_STATUS = {
    PreconditionError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    SynthesisError: 502,
    StageError: 500,
    StorageError: 502,
}


def _db_path() -> str:
    return str(settings.db_path)


def _tts_client() -> ElevenLabsClient:
    return ElevenLabsClient.from_settings(settings)


@app.exception_handler(LingodinoError)
async def service_error(request: Request, exc: LingodinoError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.on_event("startup")
async def startup():
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.storage_root.mkdir(parents=True, exist_ok=True)
    await store.init_db(_db_path())
    released = await fail_interrupted(_db_path())
    if released:
        logger.warning("Released %d conversations stuck in generating", released)
    logger.info("Lingodino media API started on port 8767")


@app.get("/health")
async def health():
    """Service health + speech backend check."""
    tts_status = "unknown"
    tts_detail = None
    try:
        tts = _tts_client()
        try:
            tts_health = await tts.health_check()
            tts_status = tts_health.get("status", "unknown")
        finally:
            await tts.close()
    except Exception as e:
        tts_status = "unreachable"
        tts_detail = str(e)

    return {
        "status": "ok" if tts_status == "ok" else "degraded",
        "tts_backend": {"status": tts_status, "error": tts_detail},
        "max_upload_bytes": MAX_UPLOAD_BYTES,
    }


@app.get("/voices")
async def list_voices():
    """Voice catalog plus supported tone/emotion markers."""
    tts = _tts_client()
    try:
        voices = await tts.list_voices()
    finally:
        await tts.close()
    return {"voices": voices, "tones": AVAILABLE_TONES, "emotions": AVAILABLE_EMOTIONS}


@app.post("/conversations", status_code=201)
async def create_conversation(payload: dict = Body(...)):
    """Create a draft conversation."""
    if not payload.get("name"):
        raise HTTPException(400, "Conversation name is required")
    doc = dict(payload)
    doc["id"] = store.new_id()
    try:
        conversation = Conversation.from_dict(doc)
    except (KeyError, ValueError) as e:
        raise HTTPException(400, f"Invalid conversation: {e}")
    conversation.status = ConversationStatus.DRAFT
    created = await store.insert_document(_db_path(), COLLECTION, conversation.to_dict())
    return created


@app.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    conversation = await load_conversation(_db_path(), conversation_id)
    return conversation.to_dict()


@app.post("/conversations/import-script")
async def import_script(payload: dict = Body(...)):
    """Parse a pasted dialogue script into sentences and participants."""
    try:
        existing = [ConversationParticipant.from_dict(p) for p in payload.get("participants") or []]
    except (KeyError, ValueError) as e:
        raise HTTPException(400, f"Invalid participants: {e}")
    parsed = parse_script(payload.get("text") or "", existing)
    return {
        "sentences": [s.to_dict() for s in parsed.sentences],
        "participants": [p.to_dict() for p in parsed.participants],
    }


async def _generate_in_background(conversation: Conversation):
    tts = _tts_client()
    try:
        await run_generation(_db_path(), conversation, storage, tts)
    except Exception as e:
        # Already recorded on the conversation and logged by run_generation
        logger.info("Conversation %s: background generation ended with failure: %s", conversation.id, e)
    finally:
        await tts.close()


@app.post("/conversations/{conversation_id}/generate", status_code=202)
async def generate_audio(conversation_id: str):
    """Validate, claim, and start dialogue audio generation."""
    conversation = await begin_generation(_db_path(), conversation_id)

    task = asyncio.create_task(_generate_in_background(conversation))
    _running_tasks[conversation_id] = task
    task.add_done_callback(lambda t: _running_tasks.pop(conversation_id, None))

    logger.info("Conversation %s: generation started (%d sentences)",
                conversation_id, len(conversation.sentences))
    return {"id": conversation_id, "status": ConversationStatus.GENERATING.value}


async def _read_asset(upload: UploadFile | None, field: str) -> Asset | None:
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(400, f"{field} too large: {len(content)} bytes (max {MAX_UPLOAD_BYTES})")
    if not content:
        return None
    return Asset(filename=upload.filename, data=content)


@app.post("/conversations/{conversation_id}/generate-video")
async def generate_video(
    conversation_id: str,
    image: UploadFile = File(...),
    music: UploadFile | None = File(None),
    intro_image: UploadFile | None = File(None, alias="introImage"),
    outro_video: UploadFile | None = File(None, alias="outroVideo"),
    offset: float = Form(DEFAULT_INTRO_SECS),
    width: int = Form(DEFAULT_WIDTH),
    height: int = Form(DEFAULT_HEIGHT),
):
    """Compose the conversation video; `offset` is the intro duration in seconds."""
    main_image = await _read_asset(image, "image")
    if main_image is None:
        raise HTTPException(400, "Image file is required")

    result = await compose_video(
        _db_path(),
        conversation_id,
        main_image,
        storage,
        music=await _read_asset(music, "music"),
        intro_image=await _read_asset(intro_image, "introImage"),
        outro_video=await _read_asset(outro_video, "outroVideo"),
        intro_duration=offset,
        width=width,
        height=height,
        renderer=FFmpegRenderer(settings.render),
    )
    return {"success": True, "videoKey": result.video_key, "subtitleKey": result.subtitle_key}


@app.get("/conversations/{conversation_id}/download")
async def download_audio(conversation_id: str):
    """Signed URL for the generated dialogue audio."""
    conversation = await load_conversation(_db_path(), conversation_id)
    if not conversation.audio_key:
        raise HTTPException(404, "No audio available for this conversation")
    url = storage.signed_get_url(
        conversation.audio_key,
        ttl=DOWNLOAD_TTL_SECS,
        download_name=conversation.audio_file_name or "dialogue.mp3",
    )
    return {"url": url, "fileName": conversation.audio_file_name}


@app.post("/build-production")
async def build_production_bundle():
    """Export courses JSON and vocabulary/grammar SQLite for the mobile app."""
    return await build_production(_db_path(), storage, settings.production_public_url)


@app.get("/files/{key:path}")
async def get_file(key: str, expires: int, sig: str, download: str | None = None):
    """Serve a stored object behind a signed, expiring URL."""
    if not storage.verify(key, expires, sig, download):
        raise HTTPException(403, "Invalid or expired signature")
    path: Path = storage.path_for(key)
    if not path.is_file():
        raise HTTPException(404, f"Object not found: {key}")
    return FileResponse(str(path), media_type=storage.content_type(key), filename=download)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8767)
