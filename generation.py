# ABOUTME: Conversation audio generation workflow around the dialogue orchestrator
# ABOUTME: Claims the record, synthesizes, uploads audio, persists alignment or records failure
from __future__ import annotations

import asyncio
import io
import logging
import re

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

import store
from dialogue import Degraded, build_inputs, order_sentences, synthesize
from errors import ConflictError, NotFoundError, StorageError
from models import Conversation, ConversationStatus
from storage import LocalObjectStorage, make_key
from tts_client import ElevenLabsClient

logger = logging.getLogger("lingodino-media.generation")

COLLECTION = "conversations"
INTERRUPTED_MESSAGE = "Generation interrupted by a server restart"


def _measure_duration_secs(audio: bytes) -> float:
    """Playback length of encoded audio (needs ffmpeg for mp3)."""
    return AudioSegment.from_file(io.BytesIO(audio)).duration_seconds


def audio_file_name(conversation: Conversation) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', conversation.name)}_dialogue.mp3"


async def load_conversation(db_path: str, conversation_id: str) -> Conversation:
    doc = await store.find_by_id(db_path, COLLECTION, conversation_id)
    if doc is None:
        raise NotFoundError(f"Conversation not found: {conversation_id}")
    return Conversation.from_dict(doc)


async def begin_generation(db_path: str, conversation_id: str) -> Conversation:
    """Validate preconditions and move the conversation to `generating`."""
    conversation = await load_conversation(db_path, conversation_id)
    build_inputs(order_sentences(conversation.sentences), conversation.participants)

    doc = await store.update_document(
        db_path, COLLECTION, conversation_id,
        {"status": ConversationStatus.GENERATING.value, "errorMessage": ""},
        unless={"status": ConversationStatus.GENERATING.value},
    )
    if doc is None:
        raise ConflictError(f"Conversation {conversation_id} is already generating")
    return Conversation.from_dict(doc)


async def fail_interrupted(db_path: str, page_size: int = 500) -> int:
    """Mark conversations left in `generating` by a previous process as failed.

    Generation runs as an in-process task, so after a restart nothing owns
    those claims any more. Returns how many records were released.
    """
    released = 0
    offset = 0
    while True:
        docs = await store.list_documents(db_path, COLLECTION, limit=page_size, offset=offset)
        for doc in docs:
            if doc.get("status") != ConversationStatus.GENERATING.value:
                continue
            await store.update_document(db_path, COLLECTION, doc["id"], {
                "status": ConversationStatus.FAILED.value,
                "errorMessage": INTERRUPTED_MESSAGE,
            })
            logger.warning("Conversation %s: generation interrupted by restart", doc["id"])
            released += 1
        if len(docs) < page_size:
            return released
        offset += page_size


async def discard_artifact(storage: LocalObjectStorage, key: str | None, keep: str | None = None):
    if not key or key == keep:
        return
    try:
        await storage.delete(key)
    except (NotFoundError, StorageError, OSError) as e:
        logger.warning("Could not delete replaced artifact %s: %s", key, e)


async def run_generation(
    db_path: str,
    conversation: Conversation,
    storage: LocalObjectStorage,
    tts: ElevenLabsClient,
) -> Conversation:
    """Synthesize a claimed conversation and persist the outcome."""
    conv_id = conversation.id
    try:
        result = await synthesize(conversation.sentences, conversation.participants, tts)

        duration = result.alignment.total_duration
        if isinstance(result, Degraded):
            logger.warning("Conversation %s: degraded alignment (%s)", conv_id, result.reason)
            try:
                duration = await asyncio.to_thread(_measure_duration_secs, result.audio)
            except (CouldntDecodeError, OSError) as e:
                logger.warning("Conversation %s: could not measure audio duration: %s", conv_id, e)
                duration = 0.0

        file_name = audio_file_name(conversation)
        key = await storage.upload(make_key(file_name, "conversations"), result.audio, "audio/mpeg")

        doc = await store.update_document(db_path, COLLECTION, conv_id, {
            "status": ConversationStatus.COMPLETED.value,
            "audioKey": key,
            "audioFileName": file_name,
            "duration": duration,
            "alignment": result.alignment.to_dict(),
            "errorMessage": "",
        })
        if doc is None:
            raise NotFoundError(f"Conversation {conv_id} was deleted during generation")

        await discard_artifact(storage, conversation.audio_key, keep=key)
        logger.info("Conversation %s: audio generated (%s, %.1fs)", conv_id, key, duration)
        return Conversation.from_dict(doc)

    except asyncio.CancelledError:
        logger.info("Conversation %s: generation cancelled", conv_id)
        await store.update_document(db_path, COLLECTION, conv_id, {
            "status": ConversationStatus.FAILED.value,
            "errorMessage": "Generation cancelled",
        })
        raise
    except Exception as e:
        logger.exception("Conversation %s: generation failed: %s", conv_id, e)
        await store.update_document(db_path, COLLECTION, conv_id, {
            "status": ConversationStatus.FAILED.value,
            "errorMessage": str(e) or "Failed to generate audio",
        })
        raise


async def generate_conversation_audio(
    db_path: str,
    conversation_id: str,
    storage: LocalObjectStorage,
    tts: ElevenLabsClient,
) -> Conversation:
    conversation = await begin_generation(db_path, conversation_id)
    return await run_generation(db_path, conversation, storage, tts)
