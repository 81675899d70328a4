# ABOUTME: Conversation aggregate, dialogue sentences, and word/segment timing types
# ABOUTME: Serializes to the camelCase documents stored in the db and shipped to mobile clients
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ParticipantRole(str, Enum):
    SPEAKER1 = "speaker1"
    SPEAKER2 = "speaker2"


class ConversationStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


def _num(value) -> float:
    """Coerce stored timing values; missing or malformed becomes 0."""
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class ConversationParticipant:
    role: ParticipantRole
    name: str
    voice_id: str = ""
    voice_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ConversationParticipant:
        return cls(
            role=ParticipantRole(data["role"]),
            name=data.get("name", ""),
            voice_id=data.get("voiceId") or "",
            voice_name=data.get("voiceName"),
        )

    def to_dict(self) -> dict:
        out = {"role": self.role.value, "name": self.name, "voiceId": self.voice_id}
        if self.voice_name:
            out["voiceName"] = self.voice_name
        return out


@dataclass
class DialogueSentence:
    id: str
    participant_role: ParticipantRole
    text: str
    order: int = 0
    tone: str | None = None
    emotion: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> DialogueSentence:
        return cls(
            id=str(data["id"]),
            participant_role=ParticipantRole(data["participantRole"]),
            text=data.get("text", ""),
            order=int(data.get("order") or 0),
            tone=data.get("tone") or None,
            emotion=data.get("emotion") or None,
        )

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "participantRole": self.participant_role.value,
            "text": self.text,
            "order": self.order,
        }
        if self.tone:
            out["tone"] = self.tone
        if self.emotion:
            out["emotion"] = self.emotion
        return out


@dataclass(frozen=True)
class WordTiming:
    word: str
    start: float
    end: float

    @classmethod
    def from_dict(cls, data: dict) -> WordTiming:
        return cls(word=data.get("word", ""), start=_num(data.get("start")), end=_num(data.get("end")))

    def to_dict(self) -> dict:
        return {"word": self.word, "start": self.start, "end": self.end}


@dataclass(frozen=True)
class DialogueSegment:
    sentence_id: str
    text: str
    participant_role: ParticipantRole
    start_time: float
    end_time: float
    words: tuple[WordTiming, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> DialogueSegment:
        words = data.get("words")
        return cls(
            sentence_id=str(data["sentenceId"]),
            text=data.get("text", ""),
            participant_role=ParticipantRole(data["participantRole"]),
            start_time=_num(data.get("startTime")),
            end_time=_num(data.get("endTime")),
            words=tuple(WordTiming.from_dict(w) for w in words) if isinstance(words, list) else (),
        )

    def to_dict(self) -> dict:
        return {
            "sentenceId": self.sentence_id,
            "text": self.text,
            "participantRole": self.participant_role.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "words": [w.to_dict() for w in self.words],
        }


@dataclass(frozen=True)
class DialogueAlignment:
    segments: tuple[DialogueSegment, ...] = ()
    total_duration: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> DialogueAlignment:
        return cls(
            segments=tuple(DialogueSegment.from_dict(s) for s in data.get("segments") or []),
            total_duration=_num(data.get("totalDuration")),
        )

    def to_dict(self) -> dict:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "totalDuration": self.total_duration,
        }


@dataclass
class Conversation:
    id: str
    name: str
    description: str = ""
    participants: list[ConversationParticipant] = field(default_factory=list)
    sentences: list[DialogueSentence] = field(default_factory=list)
    status: ConversationStatus = ConversationStatus.DRAFT
    audio_key: str | None = None
    audio_file_name: str | None = None
    video_key: str | None = None
    subtitle_key: str | None = None
    duration: float = 0.0
    alignment: DialogueAlignment | None = None
    error_message: str = ""

    def participant_for(self, role: ParticipantRole) -> ConversationParticipant | None:
        for participant in self.participants:
            if participant.role == role:
                return participant
        return None

    @classmethod
    def from_dict(cls, data: dict) -> Conversation:
        alignment = data.get("alignment")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Conversation",
            description=data.get("description") or "",
            participants=[ConversationParticipant.from_dict(p) for p in data.get("participants") or []],
            sentences=[DialogueSentence.from_dict(s) for s in data.get("sentences") or []],
            status=ConversationStatus(data.get("status") or ConversationStatus.DRAFT.value),
            audio_key=data.get("audioKey"),
            audio_file_name=data.get("audioFileName"),
            video_key=data.get("videoKey"),
            subtitle_key=data.get("subtitleKey"),
            duration=_num(data.get("duration")),
            alignment=DialogueAlignment.from_dict(alignment) if alignment else None,
            error_message=data.get("errorMessage") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "participants": [p.to_dict() for p in self.participants],
            "sentences": [s.to_dict() for s in self.sentences],
            "status": self.status.value,
            "audioKey": self.audio_key,
            "audioFileName": self.audio_file_name,
            "videoKey": self.video_key,
            "subtitleKey": self.subtitle_key,
            "duration": self.duration,
            "alignment": self.alignment.to_dict() if self.alignment else None,
            "errorMessage": self.error_message,
        }
