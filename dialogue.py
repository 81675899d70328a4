# ABOUTME: Turns ordered per-speaker sentences into one dialogue synthesis call
# ABOUTME: Maps voice segments + global alignment back to sentence ids; degrades to plain audio on failure
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, Union

import httpx

from errors import PreconditionError, SynthesisError
from models import (
    ConversationParticipant,
    DialogueAlignment,
    DialogueSegment,
    DialogueSentence,
)
from tts_client import DialogueInput, ElevenLabsClient, TimestampedAudio
from word_timing import slice_word_timings

logger = logging.getLogger("lingodino-media.dialogue")

AVAILABLE_TONES = [
    "cheerfully", "sadly", "angrily", "excitedly", "calmly", "nervously", "sarcastically",
    "whispering", "shouting", "warmly", "coldly", "mysteriously", "playfully",
]

AVAILABLE_EMOTIONS = [
    "happy", "sad", "angry", "surprised", "fearful", "disgusted", "neutral",
    "excited", "anxious", "confident", "curious", "tired",
]


@dataclass(frozen=True)
class Timestamped:
    """Synthesis with word-level alignment."""
    audio: bytes
    alignment: DialogueAlignment
    degraded: ClassVar[bool] = False


@dataclass(frozen=True)
class Degraded:
    """Playable audio with zeroed alignment; `reason` says why timing was lost."""
    audio: bytes
    alignment: DialogueAlignment
    reason: str
    degraded: ClassVar[bool] = True


DialogueResult = Union[Timestamped, Degraded]


def format_sentence_text(sentence: DialogueSentence) -> str:
    """Prefix tone/emotion as one bracketed marker: `[tone, emotion] text`."""
    markers = [m for m in (sentence.tone, sentence.emotion) if m]
    if not markers:
        return sentence.text
    return f"[{', '.join(markers)}] {sentence.text}"


def order_sentences(sentences: list[DialogueSentence]) -> list[DialogueSentence]:
    # sorted() is stable, so equal orders keep list position
    return sorted(sentences, key=lambda s: s.order)


def build_inputs(
    sentences: list[DialogueSentence],
    participants: list[ConversationParticipant],
) -> list[DialogueInput]:
    """Validate voice assignments and build one request item per sentence."""
    if not sentences:
        raise PreconditionError("Conversation must have at least one sentence")

    voices = {p.role: p for p in participants}
    inputs: list[DialogueInput] = []
    for sentence in sentences:
        participant = voices.get(sentence.participant_role)
        if participant is None or not participant.voice_id:
            name = participant.name if participant else sentence.participant_role.value
            raise PreconditionError(f'Participant "{name}" must have a voice assigned')
        inputs.append(DialogueInput(text=format_sentence_text(sentence), voice_id=participant.voice_id))
    return inputs


def degraded_alignment(sentences: list[DialogueSentence]) -> DialogueAlignment:
    return DialogueAlignment(
        segments=tuple(
            DialogueSegment(
                sentence_id=s.id,
                text=s.text,
                participant_role=s.participant_role,
                start_time=0.0,
                end_time=0.0,
            )
            for s in sentences
        ),
        total_duration=0.0,
    )


def build_alignment(sentences: list[DialogueSentence], response: TimestampedAudio) -> DialogueAlignment:
    """Join voice segments to sentences by position and derive word timings."""
    if len(response.voice_segments) != len(sentences):
        raise SynthesisError(
            f"Backend returned {len(response.voice_segments)} voice segments for {len(sentences)} inputs"
        )

    chars = response.alignment.characters if response.alignment else []
    starts = response.alignment.start_times if response.alignment else []
    ends = response.alignment.end_times if response.alignment else []

    segments: list[DialogueSegment] = []
    total_duration = 0.0
    for sentence, voice_segment in zip(sentences, response.voice_segments):
        words = slice_word_timings(
            chars, starts, ends,
            voice_segment.character_start_index,
            voice_segment.character_end_index,
        )
        segments.append(DialogueSegment(
            sentence_id=sentence.id,
            text=sentence.text,
            participant_role=sentence.participant_role,
            start_time=voice_segment.start_time,
            end_time=voice_segment.end_time,
            words=tuple(words),
        ))
        total_duration = max(total_duration, voice_segment.end_time)

    return DialogueAlignment(segments=tuple(segments), total_duration=total_duration)


async def synthesize(
    sentences: list[DialogueSentence],
    participants: list[ConversationParticipant],
    client: ElevenLabsClient,
) -> DialogueResult:
    """Synthesize the whole dialogue; fall back to untimed audio if timestamps fail.

    Precondition violations raise before any network call. A failure of the
    fallback call propagates.
    """
    ordered = order_sentences(sentences)
    inputs = build_inputs(ordered, participants)

    try:
        response = await client.dialogue_with_timestamps(inputs)
    except (httpx.HTTPError, SynthesisError) as e:
        logger.warning("Timestamped dialogue synthesis failed, falling back to plain synthesis: %s", e)
        audio = await client.dialogue(inputs)
        return Degraded(audio=audio, alignment=degraded_alignment(ordered), reason=str(e))

    try:
        alignment = build_alignment(ordered, response)
    except SynthesisError as e:
        # Audio is still usable; only the join to sentences is untrustworthy
        logger.warning("Dialogue alignment unusable, keeping untimed audio: %s", e)
        return Degraded(audio=response.audio, alignment=degraded_alignment(ordered), reason=str(e))

    logger.info("Synthesized %d sentences (%.2fs, %d bytes)",
                len(ordered), alignment.total_duration, len(response.audio))
    return Timestamped(audio=response.audio, alignment=alignment)
