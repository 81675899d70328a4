# ABOUTME: Composes a conversation video: intro card, speech clip over a still, optional outro
# ABOUTME: Runs all stages in one temp dir, uploads video + intro-shifted subtitles, then commits
from __future__ import annotations

import dataclasses
import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

import store
from errors import NotFoundError, PreconditionError
from generation import COLLECTION, discard_artifact, load_conversation
from models import Conversation, DialogueAlignment, DialogueSegment, WordTiming
from render import FFmpegRenderer
from storage import LocalObjectStorage, fetch_signed, make_key
from sync_text import generate_dialogue_lrc

logger = logging.getLogger("lingodino-media.composer")

DEFAULT_INTRO_SECS = 2.0
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
MIN_MAIN_SECS = 0.1
FETCH_TIMEOUT = 120.0


@dataclass(frozen=True)
class Asset:
    """An uploaded file held in memory."""
    filename: str
    data: bytes

    def suffix(self, default: str) -> str:
        return Path(self.filename or "").suffix.lower() or default


@dataclass(frozen=True)
class CompositionPlan:
    """Everything the stages need to know, fixed before any stage runs."""
    title: str
    intro_duration: float
    main_duration: float
    width: int
    height: int
    has_intro_image: bool
    has_music: bool
    has_outro: bool

    @classmethod
    def build(
        cls,
        conversation: Conversation,
        intro_duration: float,
        width: int,
        height: int,
        intro_image: Asset | None,
        music: Asset | None,
        outro_video: Asset | None,
    ) -> CompositionPlan:
        if intro_duration <= 0:
            raise PreconditionError("Intro duration must be greater than zero")
        if width <= 0 or height <= 0 or width % 2 or height % 2:
            raise PreconditionError(f"Output size must be positive and even, got {width}x{height}")
        return cls(
            title=conversation.name or "Conversation",
            intro_duration=intro_duration,
            main_duration=max(MIN_MAIN_SECS, conversation.duration or 0.0),
            width=width,
            height=height,
            has_intro_image=intro_image is not None,
            has_music=music is not None,
            has_outro=outro_video is not None,
        )


@dataclass(frozen=True)
class ComposeResult:
    video_key: str
    subtitle_key: str


def shift_segments(alignment: DialogueAlignment, offset: float) -> list[DialogueSegment]:
    """Copy of the alignment's segments with every time moved by `offset` seconds."""
    return [
        dataclasses.replace(
            seg,
            start_time=seg.start_time + offset,
            end_time=seg.end_time + offset,
            words=tuple(WordTiming(w.word, w.start + offset, w.end + offset) for w in seg.words),
        )
        for seg in alignment.segments
    ]


def subtitle_json(segments: list[DialogueSegment]) -> bytes:
    return json.dumps([s.to_dict() for s in segments], ensure_ascii=False, indent=2).encode("utf-8")


def _require_media(conversation: Conversation):
    if not conversation.audio_key:
        raise PreconditionError("Conversation audio not generated yet")
    if conversation.alignment is None:
        raise PreconditionError("Conversation alignment data missing")


async def _render(
    work: Path,
    plan: CompositionPlan,
    conversation: Conversation,
    image: Asset,
    intro_image: Asset | None,
    music: Asset | None,
    outro_video: Asset | None,
    storage: LocalObjectStorage,
    renderer: FFmpegRenderer,
    http_client: httpx.AsyncClient,
    lyrics: str,
) -> Path:
    # 1. Normalize stills
    raw_image = work / f"raw_image{image.suffix('.png')}"
    raw_image.write_bytes(image.data)
    still = await renderer.normalize_still(raw_image, work / "image.png")

    intro_still = None
    if plan.has_intro_image:
        raw_intro = work / f"raw_intro_image{intro_image.suffix('.png')}"
        raw_intro.write_bytes(intro_image.data)
        intro_still = await renderer.normalize_still(raw_intro, work / "intro_image.png")

    # 2. Speech audio
    speech = work / "audio.mp3"
    speech.write_bytes(await fetch_signed(storage, conversation.audio_key, http_client))

    # 3. Optional assets
    music_path = work / "music.mp3" if plan.has_music else None
    if music_path:
        music_path.write_bytes(music.data)
    outro_source = work / "outro_input.mp4" if plan.has_outro else None
    if outro_source:
        outro_source.write_bytes(outro_video.data)

    # 4-6. Clips
    clips = [
        await renderer.render_intro(
            speech, work / "intro.mp4", plan.intro_duration, plan.width, plan.height,
            intro_image=intro_still, title=plan.title,
        ),
        await renderer.render_main(
            still, speech, work / "main.mp4", plan.main_duration, plan.width, plan.height,
            music=music_path,
        ),
    ]
    if outro_source:
        clips.append(await renderer.process_outro(outro_source, work / "outro_processed.mp4",
                                                  plan.width, plan.height))

    # 7. Concatenate
    output = await renderer.concat(clips, work / "output.mp4")
    await renderer.tag_video(output, plan.title, lyrics)
    return output


async def compose_video(
    db_path: str,
    conversation_id: str,
    image: Asset,
    storage: LocalObjectStorage,
    music: Asset | None = None,
    intro_image: Asset | None = None,
    outro_video: Asset | None = None,
    intro_duration: float = DEFAULT_INTRO_SECS,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    renderer: FFmpegRenderer | None = None,
    http_client: httpx.AsyncClient | None = None,
    work_root: Path | None = None,
) -> ComposeResult:
    """Render, upload and attach a video + shifted subtitles to a conversation.

    The record is only updated after both uploads succeed; the working
    directory is removed on every exit path.
    """
    if image is None or not image.data:
        raise PreconditionError("Image file is required")

    conversation = await load_conversation(db_path, conversation_id)
    _require_media(conversation)
    plan = CompositionPlan.build(conversation, intro_duration, width, height, intro_image, music, outro_video)
    renderer = renderer or FFmpegRenderer()

    shifted = shift_segments(conversation.alignment, plan.intro_duration)
    lyrics = generate_dialogue_lrc(shifted, conversation.participants, title=plan.title)

    logger.info("Composing video for %s (intro=%.2fs main=%.2fs %dx%d music=%s intro_image=%s outro=%s)",
                conversation_id, plan.intro_duration, plan.main_duration, plan.width, plan.height,
                plan.has_music, plan.has_intro_image, plan.has_outro)

    with tempfile.TemporaryDirectory(prefix="lingodino-video-", dir=work_root) as tmp:
        if http_client is None:
            async with httpx.AsyncClient(timeout=httpx.Timeout(FETCH_TIMEOUT, connect=10.0)) as client:
                output = await _render(Path(tmp), plan, conversation, image, intro_image, music,
                                       outro_video, storage, renderer, client, lyrics)
        else:
            output = await _render(Path(tmp), plan, conversation, image, intro_image, music,
                                   outro_video, storage, renderer, http_client, lyrics)

        # 8. Upload video
        video_key = await storage.upload(make_key("video.mp4", "conversations"), output.read_bytes(), "video/mp4")

    # 9. Shifted subtitles; the stored alignment still describes the audio-only artifact
    try:
        subtitle_key = await storage.upload(
            make_key("subtitles.json", "conversations"), subtitle_json(shifted), "application/json",
        )
    except Exception:
        await discard_artifact(storage, video_key)
        raise

    # 10. Commit
    doc = await store.update_document(db_path, COLLECTION, conversation_id, {
        "videoKey": video_key,
        "subtitleKey": subtitle_key,
    })
    if doc is None:
        await discard_artifact(storage, video_key)
        await discard_artifact(storage, subtitle_key)
        raise NotFoundError(f"Conversation {conversation_id} was deleted during composition")

    await discard_artifact(storage, conversation.video_key, keep=video_key)
    await discard_artifact(storage, conversation.subtitle_key, keep=subtitle_key)
    logger.info("Conversation %s: video %s, subtitles %s", conversation_id, video_key, subtitle_key)
    return ComposeResult(video_key=video_key, subtitle_key=subtitle_key)
