# ABOUTME: Rebuilds word-level timing from per-character synthesis alignment
# ABOUTME: CJK chars become single-char words; bracketed tone/emotion markers are dropped
from __future__ import annotations

import re
from collections.abc import Sequence

from models import WordTiming

# CJK ideographs, CJK punctuation, kana, full/half-width forms, Hangul syllables
CJK_PATTERN = re.compile(r"[\u4E00-\u9FFF\u3000-\u303F\u3040-\u309F\u30A0-\u30FF\uFF00-\uFFEF\uAC00-\uD7AF]")
WORD_BREAKS = {" ", "\t", "\n"}


def is_cjk(char: str) -> bool:
    return bool(CJK_PATTERN.match(char))


def _is_marker(word: str) -> bool:
    return "[" in word or "]" in word


def extract_word_timings(
    characters: Sequence[str],
    start_times: Sequence[float],
    end_times: Sequence[float],
) -> list[WordTiming]:
    """Group a character/time triple into words in one left-to-right pass."""
    words: list[WordTiming] = []
    current = ""
    word_start = -1
    inside_marker = False

    def flush(last_index: int):
        nonlocal current, word_start
        text = current.strip()
        if text and not _is_marker(text):
            words.append(WordTiming(text, start_times[word_start], end_times[last_index]))
        current = ""
        word_start = -1

    for i, char in enumerate(characters):
        if char == "[":
            if current:
                flush(i - 1)
            inside_marker = True
            continue
        if char == "]":
            inside_marker = False
            continue
        if inside_marker:
            continue

        if is_cjk(char):
            if current:
                flush(i - 1)
            # U+3000 ideographic space falls in the CJK range
            if char.strip():
                words.append(WordTiming(char, start_times[i], end_times[i]))
            continue

        if char in WORD_BREAKS:
            if current:
                flush(i - 1)
            continue

        if not current:
            word_start = i
        current += char

    if current:
        flush(len(characters) - 1)

    return words


def slice_word_timings(
    characters: Sequence[str],
    start_times: Sequence[float],
    end_times: Sequence[float],
    slice_start: int,
    slice_end: int,
) -> list[WordTiming]:
    """Word timings for the global alignment span [slice_start, slice_end)."""
    limit = min(len(characters), len(start_times), len(end_times))
    lo = max(0, slice_start)
    hi = min(limit, slice_end)
    if hi <= lo:
        return []
    return extract_word_timings(characters[lo:hi], start_times[lo:hi], end_times[lo:hi])
