# ABOUTME: Tests for the video composition pipeline with a fake renderer and mocked signed fetch
# ABOUTME: Stage order, optional assets, subtitle shifting, commit-on-success, temp dir cleanup
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

import store
from composer import Asset, CompositionPlan, compose_video, shift_segments
from errors import PreconditionError, StageError, StorageError
from fakes import FakeRenderer, make_conversation
from generation import load_conversation
from models import (
    ConversationStatus,
    DialogueAlignment,
    DialogueSegment,
    ParticipantRole,
    WordTiming,
)

ALIGNMENT = DialogueAlignment(
    segments=(
        DialogueSegment("s-a", "Hi there", ParticipantRole.SPEAKER1, 1.0, 3.0,
                        (WordTiming("Hi", 1.0, 1.5), WordTiming("there", 1.6, 3.0))),
    ),
    total_duration=3.0,
)
IMAGE = Asset("photo.JPG", b"jpeg-bytes")


def _seed(db_path, storage, duration=3.0, with_audio=True, **fields):
    async def run():
        conv = make_conversation()
        if with_audio:
            conv.audio_key = await storage.upload("conversations/x-audio.mp3", b"speech-bytes", "audio/mpeg")
        conv.alignment = ALIGNMENT
        conv.duration = duration
        conv.status = ConversationStatus.COMPLETED
        doc = conv.to_dict()
        doc.update(fields)
        await store.insert_document(db_path, "conversations", doc)
        return conv

    return asyncio.run(run())


def _signed_transport(storage, status: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status)
        key = request.url.path.removeprefix("/files/")
        params = request.url.params
        if not storage.verify(key, int(params["expires"]), params["sig"], params.get("download")):
            return httpx.Response(403)
        return httpx.Response(200, content=storage.path_for(key).read_bytes())

    return httpx.MockTransport(handler)


def _compose(db_path, storage, renderer, work_root, fetch_status=200, **kwargs):
    async def run():
        async with httpx.AsyncClient(transport=_signed_transport(storage, fetch_status)) as client:
            return await compose_video(
                db_path, "conv1", kwargs.pop("image", IMAGE), storage,
                renderer=renderer, http_client=client, work_root=work_root, **kwargs,
            )

    return asyncio.run(run())


@pytest.fixture
def work_root(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


def test_shift_segments_moves_every_time():
    shifted = shift_segments(ALIGNMENT, 2.0)

    assert (shifted[0].start_time, shifted[0].end_time) == (3.0, 5.0)
    assert shifted[0].words == (WordTiming("Hi", 3.0, 3.5), WordTiming("there", 3.6, 5.0))
    assert (ALIGNMENT.segments[0].start_time, ALIGNMENT.segments[0].end_time) == (1.0, 3.0)


def test_compose_uploads_shifted_subtitles_and_commits(db_path, storage, work_root):
    _seed(db_path, storage)
    renderer = FakeRenderer()

    result = _compose(db_path, storage, renderer, work_root, intro_duration=2.0)

    conv = asyncio.run(load_conversation(db_path, "conv1"))
    assert conv.video_key == result.video_key
    assert conv.subtitle_key == result.subtitle_key
    assert storage.content_type(result.video_key) == "video/mp4"

    subtitles = json.loads(storage.path_for(result.subtitle_key).read_text(encoding="utf-8"))
    assert subtitles == [{
        "sentenceId": "s-a",
        "text": "Hi there",
        "participantRole": "speaker1",
        "startTime": 3.0,
        "endTime": 5.0,
        "words": [{"word": "Hi", "start": 3.0, "end": 3.5}, {"word": "there", "start": 3.6, "end": 5.0}],
    }]
    seg = conv.alignment.segments[0]
    assert (seg.start_time, seg.end_time) == (1.0, 3.0)
    assert list(work_root.iterdir()) == []


def test_minimal_composition_stage_order(db_path, storage, work_root):
    _seed(db_path, storage)
    renderer = FakeRenderer()

    _compose(db_path, storage, renderer, work_root)

    assert renderer.stages() == ["Normalize", "Intro", "Main", "Concat", "Tag"]
    intro = dict(renderer.calls)["Intro"]
    assert intro["intro_image"] is None
    assert intro["title"] == "At the market"
    assert intro["duration"] == 2.0
    assert (intro["width"], intro["height"]) == (1280, 720)
    assert renderer.inputs["Intro"]["speech"] == b"speech-bytes"
    assert renderer.inputs["Normalize"]["source"] == b"jpeg-bytes"
    main = dict(renderer.calls)["Main"]
    assert main["music"] is None
    assert main["duration"] == 3.0
    assert str(renderer.calls[0][1]["source"]).endswith("raw_image.jpg")


def test_full_composition_with_optional_assets(db_path, storage, work_root):
    _seed(db_path, storage)
    renderer = FakeRenderer()

    _compose(
        db_path, storage, renderer, work_root,
        music=Asset("bed.mp3", b"music"),
        intro_image=Asset("intro.webp", b"intro"),
        outro_video=Asset("outro.mov", b"outro"),
        intro_duration=3.5, width=1080, height=1920,
    )

    assert renderer.stages() == ["Normalize", "Normalize", "Intro", "Main", "Outro", "Concat", "Tag"]
    calls = dict(renderer.calls)
    assert calls["Intro"]["intro_image"].name == "intro_image.png"
    assert renderer.inputs["Main"]["music"] == b"music"
    assert renderer.inputs["Outro"]["source"] == b"outro"
    assert [c.name for c in calls["Concat"]["clips"]] == ["intro.mp4", "main.mp4", "outro_processed.mp4"]
    assert "[00:04.50] Lan: Hi there" in calls["Tag"]["lyrics"]


def test_main_clip_duration_has_floor(db_path, storage, work_root):
    _seed(db_path, storage, duration=0.0)
    renderer = FakeRenderer()

    _compose(db_path, storage, renderer, work_root)

    assert dict(renderer.calls)["Main"]["duration"] == 0.1


def test_stage_failure_commits_nothing(db_path, storage, work_root):
    _seed(db_path, storage)
    renderer = FakeRenderer(fail_stage="Main")

    with pytest.raises(StageError, match=r"\[Main\]"):
        _compose(db_path, storage, renderer, work_root)

    conv = asyncio.run(load_conversation(db_path, "conv1"))
    assert conv.video_key is None
    assert conv.subtitle_key is None
    assert sorted(p.name for p in (storage.root / "conversations").iterdir()) == ["x-audio.mp3"]
    assert list(work_root.iterdir()) == []
    assert renderer.work_dirs


def test_speech_fetch_failure_is_fatal(db_path, storage, work_root):
    _seed(db_path, storage)
    renderer = FakeRenderer()

    with pytest.raises(StorageError):
        _compose(db_path, storage, renderer, work_root, fetch_status=500)

    assert "Intro" not in renderer.stages()
    assert asyncio.run(load_conversation(db_path, "conv1")).video_key is None
    assert list(work_root.iterdir()) == []


def test_requires_generated_audio(db_path, storage, work_root):
    _seed(db_path, storage, with_audio=False)
    renderer = FakeRenderer()

    with pytest.raises(PreconditionError, match="audio not generated"):
        _compose(db_path, storage, renderer, work_root)

    assert renderer.calls == []


def test_requires_alignment(db_path, storage, work_root):
    _seed(db_path, storage, alignment=None)

    with pytest.raises(PreconditionError, match="alignment"):
        _compose(db_path, storage, FakeRenderer(), work_root)


def test_requires_image(db_path, storage, work_root):
    _seed(db_path, storage)

    with pytest.raises(PreconditionError, match="Image"):
        _compose(db_path, storage, FakeRenderer(), work_root, image=Asset("empty.png", b""))


def test_previous_video_is_replaced(db_path, storage, work_root):
    old_video = asyncio.run(storage.upload("conversations/old-video.mp4", b"old", "video/mp4"))
    old_subs = asyncio.run(storage.upload("conversations/old-subtitles.json", b"[]", "application/json"))
    _seed(db_path, storage, videoKey=old_video, subtitleKey=old_subs)

    result = _compose(db_path, storage, FakeRenderer(), work_root)

    assert not storage.exists(old_video)
    assert not storage.exists(old_subs)
    assert storage.exists(result.video_key)


def test_plan_rejects_odd_or_empty_sizes():
    conv = make_conversation()

    with pytest.raises(PreconditionError):
        CompositionPlan.build(conv, 2.0, 1281, 720, None, None, None)
    with pytest.raises(PreconditionError):
        CompositionPlan.build(conv, 0.0, 1280, 720, None, None, None)

    plan = CompositionPlan.build(conv, 2.0, 1280, 720, None, Asset("m.mp3", b"m"), None)
    assert plan.has_music and not plan.has_outro and not plan.has_intro_image
    assert plan.main_duration == 0.1
