# ABOUTME: Tests for LRC lyric rendering of dialogue segments
from __future__ import annotations

from models import ConversationParticipant, DialogueSegment, ParticipantRole
from sync_text import _format_timestamp, generate_dialogue_lrc


def test_timestamp_format():
    assert _format_timestamp(0) == "[00:00.00]"
    assert _format_timestamp(75.456) == "[01:15.46]"
    assert _format_timestamp(-1) == "[00:00.00]"


def test_lines_carry_speaker_names_and_title():
    segments = [
        DialogueSegment("a", "Hello", ParticipantRole.SPEAKER1, 2.0, 3.0),
        DialogueSegment("b", "Hi", ParticipantRole.SPEAKER2, 3.5, 4.0),
    ]
    participants = [ConversationParticipant(ParticipantRole.SPEAKER1, "Lan", "v")]

    lrc = generate_dialogue_lrc(segments, participants, title="Greetings")

    assert lrc == "[ti:Greetings]\n[00:02.00] Lan: Hello\n[00:03.50] Hi\n"


def test_long_lines_are_truncated():
    seg = DialogueSegment("a", "x" * 250, ParticipantRole.SPEAKER1, 0.0, 1.0)

    line = generate_dialogue_lrc([seg]).strip()

    assert line == "[00:00.00] " + "x" * 200 + "..."
