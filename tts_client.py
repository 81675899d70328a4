# ABOUTME: Async HTTP client for the ElevenLabs text-to-dialogue and voices endpoints
# ABOUTME: Timestamped multi-speaker synthesis, plain fallback synthesis, retry with backoff
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field

import httpx

from errors import SynthesisError

logger = logging.getLogger("lingodino-media.tts")

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io"
DIALOGUE_MODEL = "eleven_v3"
OUTPUT_FORMAT = "mp3_44100_128"
REQUEST_TIMEOUT = 300.0  # long dialogues synthesize slowly
MAX_RETRIES = 3
BACKOFF_SECS = [5, 10, 20]


@dataclass(frozen=True)
class DialogueInput:
    text: str
    voice_id: str

    def to_payload(self) -> dict:
        return {"text": self.text, "voice_id": self.voice_id}


@dataclass(frozen=True)
class VoiceSegment:
    start_time: float
    end_time: float
    character_start_index: int
    character_end_index: int


@dataclass(frozen=True)
class CharacterAlignment:
    characters: list[str]
    start_times: list[float]
    end_times: list[float]


@dataclass
class TimestampedAudio:
    """Decoded response of a timestamped dialogue synthesis call."""
    audio: bytes
    voice_segments: list[VoiceSegment] = field(default_factory=list)
    alignment: CharacterAlignment | None = None


def _parse_alignment(data) -> CharacterAlignment | None:
    if not isinstance(data, dict):
        return None
    chars = data.get("characters")
    starts = data.get("character_start_times_seconds")
    ends = data.get("character_end_times_seconds")
    if not all(isinstance(v, list) for v in (chars, starts, ends)):
        return None
    try:
        return CharacterAlignment([str(c) for c in chars], [float(t) for t in starts], [float(t) for t in ends])
    except (TypeError, ValueError) as e:
        raise SynthesisError(f"Malformed alignment in dialogue response: {e}") from e


def parse_timestamped_response(data: dict) -> TimestampedAudio:
    """Decode audio and alignment, preferring the normalized alignment."""
    try:
        audio = base64.b64decode(data["audio_base64"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise SynthesisError(f"Invalid audio payload in dialogue response: {e}") from e

    try:
        segments = [
            VoiceSegment(
                start_time=float(seg["start_time_seconds"]),
                end_time=float(seg["end_time_seconds"]),
                character_start_index=int(seg["character_start_index"]),
                character_end_index=int(seg["character_end_index"]),
            )
            for seg in data.get("voice_segments") or []
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise SynthesisError(f"Malformed voice segment in dialogue response: {e}") from e

    # Normalization may rewrite text; its indices are the ones voice segments refer to
    alignment = _parse_alignment(data.get("normalized_alignment")) or _parse_alignment(data.get("alignment"))
    return TimestampedAudio(audio=audio, voice_segments=segments, alignment=alignment)


class ElevenLabsClient:
    """Async client for the speech synthesis backend."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = ELEVENLABS_BASE_URL,
        model_id: str = DIALOGUE_MODEL,
        output_format: str = OUTPUT_FORMAT,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_secs: list[float] | None = None,
    ):
        if not api_key:
            raise RuntimeError("ElevenLabs API key is not configured. Set ELEVENLABS_API_KEY.")
        self.api_key = api_key
        self.base_url = base_url
        self.model_id = model_id
        self.output_format = output_format
        self.backoff_secs = backoff_secs if backoff_secs is not None else BACKOFF_SECS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> ElevenLabsClient:
        return cls(
            settings.elevenlabs_api_key,
            base_url=settings.elevenlabs_base_url,
            model_id=settings.dialogue_model,
            output_format=settings.output_format,
            **kwargs,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"xi-api-key": self.api_key},
                timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Retry 5xx, timeouts and transport errors; 4xx fails immediately."""
        last_exc: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                client = await self._get_client()
                resp = await client.request(method, path, **kwargs)
                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp
                last_exc = httpx.HTTPStatusError(
                    f"Server error {resp.status_code}",
                    request=resp.request,
                    response=resp,
                )
            except httpx.TransportError as e:
                last_exc = e

            if attempt < MAX_RETRIES - 1:
                wait = self.backoff_secs[min(attempt, len(self.backoff_secs) - 1)]
                logger.warning("ElevenLabs request failed (attempt %d/%d), retrying in %ss: %s",
                               attempt + 1, MAX_RETRIES, wait, last_exc)
                await asyncio.sleep(wait)

        raise last_exc  # type: ignore[misc]

    async def dialogue_with_timestamps(self, inputs: list[DialogueInput]) -> TimestampedAudio:
        """Multi-speaker synthesis returning audio plus character alignment."""
        resp = await self._request_with_retry(
            "POST",
            "/v1/text-to-dialogue/with-timestamps",
            params={"output_format": self.output_format},
            json={
                "inputs": [i.to_payload() for i in inputs],
                "model_id": self.model_id,
            },
        )
        try:
            data = resp.json()
        except ValueError as e:
            raise SynthesisError(f"Dialogue response is not JSON: {e}") from e
        return parse_timestamped_response(data)

    async def dialogue(self, inputs: list[DialogueInput]) -> bytes:
        """Plain multi-speaker synthesis. Returns audio bytes."""
        resp = await self._request_with_retry(
            "POST",
            "/v1/text-to-dialogue",
            params={"output_format": self.output_format},
            json={
                "inputs": [i.to_payload() for i in inputs],
                "model_id": self.model_id,
            },
        )
        if not resp.content:
            raise SynthesisError("Dialogue synthesis returned no audio")
        return resp.content

    async def list_voices(self) -> list[dict]:
        resp = await self._request_with_retry("GET", "/v1/voices")
        return [
            {
                "voice_id": v.get("voice_id"),
                "name": v.get("name") or "Unknown",
                "category": v.get("category"),
                "labels": v.get("labels"),
                "preview_url": v.get("preview_url"),
            }
            for v in resp.json().get("voices", [])
        ]

    async def health_check(self) -> dict:
        """Check backend reachability with the configured key."""
        client = await self._get_client()
        resp = await client.get("/v1/user", timeout=5.0)
        resp.raise_for_status()
        return {"status": "ok"}
