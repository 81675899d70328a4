# ABOUTME: Parses pasted dialogue scripts ("Speaker: line") into sentences and participants
# ABOUTME: Supports colon, dash, [Speaker] and (Speaker) forms; at most two speakers
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from errors import PreconditionError
from models import ConversationParticipant, DialogueSentence, ParticipantRole

LINE_PATTERNS = [
    re.compile(r"^([^:：\-\[\]()\n]+?)[:：]\s*(.+)$"),  # Speaker: text (ASCII or full-width colon)
    re.compile(r"^([^:：\-\[\]()\n]+?)\s*-\s*(.+)$"),   # Speaker - text
    re.compile(r"^\[([^\]]+)\]\s*(.+)$"),               # [Speaker] text
    re.compile(r"^\(([^)]+)\)\s*(.+)$"),                # (Speaker) text
]
MAX_SPEAKERS = 2
ROLES = [ParticipantRole.SPEAKER1, ParticipantRole.SPEAKER2]


@dataclass
class ParsedScript:
    sentences: list[DialogueSentence]
    participants: list[ConversationParticipant]


def _parse_line(line: str) -> tuple[str, str] | None:
    for pattern in LINE_PATTERNS:
        match = pattern.match(line)
        if match:
            speaker, text = match.group(1).strip(), match.group(2).strip()
            if speaker and text:
                return speaker, text
    return None


def parse_script(
    text: str,
    existing: list[ConversationParticipant] | None = None,
) -> ParsedScript:
    """Split a script into sentences; speakers get roles by first appearance."""
    lines: list[tuple[str, str]] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        parsed = _parse_line(line)
        if parsed is None:
            shown = line[:50] + ("..." if len(line) > 50 else "")
            raise PreconditionError(f'Could not parse line: "{shown}"')
        lines.append(parsed)

    roles: dict[str, ParticipantRole] = {}
    for speaker, _ in lines:
        if speaker not in roles:
            if len(roles) == MAX_SPEAKERS:
                raise PreconditionError(f"Only {MAX_SPEAKERS} speakers are supported per conversation")
            roles[speaker] = ROLES[len(roles)]

    if not roles:
        raise PreconditionError('No dialogue found. Use the format "Name: text"')

    voices = {p.role: p for p in existing or []}
    participants = []
    for speaker, role in roles.items():
        previous = voices.get(role)
        participants.append(ConversationParticipant(
            role=role,
            name=speaker,
            voice_id=previous.voice_id if previous else "",
            voice_name=previous.voice_name if previous else None,
        ))

    sentences = [
        DialogueSentence(id=uuid.uuid4().hex[:12], participant_role=roles[speaker], text=line_text, order=i)
        for i, (speaker, line_text) in enumerate(lines)
    ]
    return ParsedScript(sentences=sentences, participants=participants)
