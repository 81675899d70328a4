# ABOUTME: Test doubles: sample conversation, ElevenLabs backend on httpx.MockTransport, fake renderer
# ABOUTME: The fake renderer writes placeholder files instead of running ffmpeg
from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx

from errors import StageError
from models import (
    Conversation,
    ConversationParticipant,
    DialogueSentence,
    ParticipantRole,
)
from tts_client import ElevenLabsClient


def make_conversation(conv_id: str = "conv1", voice2: str = "voice-b") -> Conversation:
    return Conversation(
        id=conv_id,
        name="At the market",
        participants=[
            ConversationParticipant(ParticipantRole.SPEAKER1, "Lan", "voice-a"),
            ConversationParticipant(ParticipantRole.SPEAKER2, "Minh", voice2),
        ],
        sentences=[
            DialogueSentence("s-c", ParticipantRole.SPEAKER1, "See you", order=2),
            DialogueSentence("s-a", ParticipantRole.SPEAKER1, "Hi there", order=0, tone="cheerfully"),
            DialogueSentence("s-b", ParticipantRole.SPEAKER2, "你好", order=1, emotion="happy"),
        ],
    )


def timestamped_payload(texts: list[str], audio: bytes = b"ID3-fake-mp3", seg_secs: float = 1.0) -> dict:
    """Backend-shaped response: one voice segment per text, chars laid end to end."""
    characters: list[str] = []
    starts: list[float] = []
    ends: list[float] = []
    segments = []
    t = 0.0
    for text in texts:
        first = len(characters)
        seg_start = t
        step = seg_secs / max(1, len(text))
        for ch in text:
            characters.append(ch)
            starts.append(round(t, 3))
            t += step
            ends.append(round(t, 3))
        segments.append({
            "voice_id": "v",
            "start_time_seconds": round(seg_start, 3),
            "end_time_seconds": round(t, 3),
            "character_start_index": first,
            "character_end_index": len(characters),
            "dialogue_input_index": len(segments),
        })
        characters.append(" ")
        starts.append(round(t, 3))
        ends.append(round(t, 3))
    alignment = {
        "characters": characters,
        "character_start_times_seconds": starts,
        "character_end_times_seconds": ends,
    }
    return {
        "audio_base64": base64.b64encode(audio).decode("ascii"),
        "alignment": alignment,
        "normalized_alignment": alignment,
        "voice_segments": segments,
    }


class FakeBackend:
    """Records requests; serves the timestamped and plain dialogue endpoints."""

    def __init__(self, timestamped_status: int = 200, plain_status: int = 200, payload: dict | None = None):
        self.timestamped_status = timestamped_status
        self.plain_status = plain_status
        self.payload = payload
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/text-to-dialogue/with-timestamps":
            if self.timestamped_status != 200:
                return httpx.Response(self.timestamped_status, json={"detail": "unsupported"})
            body = json.loads(request.content)
            payload = self.payload or timestamped_payload([i["text"] for i in body["inputs"]])
            return httpx.Response(200, json=payload)
        if path == "/v1/text-to-dialogue":
            if self.plain_status != 200:
                return httpx.Response(self.plain_status, json={"detail": "boom"})
            return httpx.Response(200, content=b"plain-mp3-bytes")
        if path == "/v1/voices":
            return httpx.Response(200, json={"voices": [{"voice_id": "voice-a", "name": "Aria"}]})
        return httpx.Response(404)

    def client(self) -> ElevenLabsClient:
        return ElevenLabsClient(
            "test-key",
            base_url="https://tts.test",
            transport=httpx.MockTransport(self.handler),
            backoff_secs=[0, 0, 0],
        )


class FakeRenderer:
    """Stage interface double; `fail_stage` makes that stage raise StageError."""

    def __init__(self, fail_stage: str | None = None):
        self.fail_stage = fail_stage
        self.calls: list[tuple[str, dict]] = []
        # Input file contents as seen by each stage; the work dir is gone once compose returns
        self.inputs: dict[str, dict[str, bytes]] = {}
        self.work_dirs: set[Path] = set()

    def _stage(self, name: str, output: Path, **kwargs) -> Path:
        self.calls.append((name, kwargs))
        self.inputs[name] = {
            key: value.read_bytes()
            for key, value in kwargs.items()
            if isinstance(value, Path) and value.is_file()
        }
        self.work_dirs.add(output.parent)
        if name == self.fail_stage:
            raise StageError(name, ["ffmpeg", "-i", "x"], 1, "simulated failure")
        output.write_bytes(f"{name}-output".encode())
        return output

    def stages(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def normalize_still(self, source: Path, output: Path) -> Path:
        return self._stage("Normalize", output, source=source)

    async def render_intro(self, speech, output, duration, width, height, intro_image=None, title="Conversation"):
        return self._stage("Intro", output, speech=speech, duration=duration, width=width, height=height,
                           intro_image=intro_image, title=title)

    async def render_main(self, image, speech, output, duration, width, height, music=None):
        return self._stage("Main", output, image=image, speech=speech, duration=duration, width=width,
                           height=height, music=music)

    async def process_outro(self, source, output, width, height):
        return self._stage("Outro", output, source=source, width=width, height=height)

    async def concat(self, clips, output):
        return self._stage("Concat", output, clips=list(clips))

    async def tag_video(self, path, title, lyrics):
        self.calls.append(("Tag", {"title": title, "lyrics": lyrics}))
        if self.fail_stage == "Tag":
            raise StageError("Tag", ["mutagen", str(path)], None, "simulated failure")
