# ABOUTME: Renders dialogue alignment as synchronized LRC lyrics
# ABOUTME: Used to embed the subtitle track into the finished video's metadata
from __future__ import annotations

from models import ConversationParticipant, DialogueSegment

MAX_LINE_CHARS = 200


def _format_timestamp(secs: float) -> str:
    """Format seconds as [mm:ss.xx] for LRC."""
    secs = max(0.0, secs)
    minutes = int(secs // 60)
    remainder = secs % 60
    return f"[{minutes:02d}:{remainder:05.2f}]"


def generate_dialogue_lrc(
    segments: list[DialogueSegment],
    participants: list[ConversationParticipant] | None = None,
    title: str | None = None,
) -> str:
    """One LRC line per segment, prefixed with the speaker's name when known."""
    names = {p.role: p.name for p in participants or [] if p.name}
    lines: list[str] = []
    if title:
        lines.append(f"[ti:{title}]")

    for seg in segments:
        text = seg.text[:MAX_LINE_CHARS] + "..." if len(seg.text) > MAX_LINE_CHARS else seg.text
        speaker = names.get(seg.participant_role)
        if speaker:
            text = f"{speaker}: {text}"
        lines.append(f"{_format_timestamp(seg.start_time)} {text}")

    return "\n".join(lines) + "\n"
