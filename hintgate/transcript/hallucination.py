"""Rejection of transcripts that are acoustic artifacts rather than speech.

ASR models tend to emit stock phrases (video outros, sign-offs), runs of a
single character, bare punctuation or drawn-out vowels when fed silence or
noise. Anything matching these patterns is treated as if nothing was said.
"""
import re
from typing import Iterable, List, Optional, Pattern

HALLUCINATION_PATTERNS: List[Pattern[str]] = [
    # video outro / channel promotion
    re.compile(r"ご視聴ありがとうございました"),
    re.compile(r"字幕.*作成"),
    re.compile(r"チャンネル.*登録"),
    re.compile(r"高評価.*お願い"),
    re.compile(r"ご覧いただき.*ありがとう"),
    re.compile(r"次回.*お楽しみ"),
    re.compile(r"グッド.*ボタン"),
    re.compile(r"コメント.*お願い"),
    re.compile(r"動画.*見て"),
    re.compile(r"(?i)thanks? (you )?for watching"),
    re.compile(r"(?i)please subscribe"),
    # greetings and sign-offs
    re.compile(r"おやすみなさい"),
    re.compile(r"ありがとうございました"),
    re.compile(r"お疲れ様でした"),
    # punctuation only
    re.compile(r"^\.+$"),
    re.compile(r"^…+$"),
    re.compile(r"^[、。,.!?！？\s]+$"),
    # too short to mean anything
    re.compile(r"^.{1,2}$"),
    # same character three or more times in a row
    re.compile(r"(.)\1{2,}"),
    # vowels and fillers only
    re.compile(r"^[あうえおん]+$"),
    re.compile(r"^ん+$"),
    re.compile(r"^はい+$"),
    re.compile(r"^えー+$"),
    re.compile(r"^あー+$"),
    re.compile(r"^うー+$"),
]


def compile_patterns(extra: Optional[Iterable[str]] = None) -> List[Pattern[str]]:
    """Built-in patterns plus user supplied regular expressions."""
    patterns = list(HALLUCINATION_PATTERNS)
    for source in extra or ():
        patterns.append(re.compile(source))
    return patterns


def matches_hallucination(text: str, patterns: Optional[List[Pattern[str]]] = None) -> bool:
    """True if the stripped text matches any artifact pattern."""
    trimmed = text.strip()
    return any(p.search(trimmed) for p in (patterns or HALLUCINATION_PATTERNS))


def is_hallucination(
    text: Optional[str],
    min_chars: int = 3,
    patterns: Optional[List[Pattern[str]]] = None
) -> bool:
    """
    Check whether a transcript should be discarded outright.

    Args:
        text: Transcript from the ASR service
        min_chars: Shorter transcripts are always rejected
        patterns: Artifact patterns (defaults to the built-in list)

    Returns:
        True if the transcript must not reach the user or the classifier
    """
    if text is None:
        return True
    trimmed = text.strip()
    if not trimmed:
        return True
    if len(trimmed) < min_chars:
        return True
    return matches_hallucination(trimmed, patterns)
