"""Transcript reliability scoring (Gate B)."""
import re
from typing import List, Optional, Pattern
from hintgate.core.config import TranscriptGateConfig
from hintgate.transcript.hallucination import matches_hallucination

# Plausible speech that ASR also produces from noise. Unlike the hard filter
# these only lower the score.
BORDERLINE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^(ええ|そうですね|なるほど|そうですか)[、。！？!?\s]*$"),
    re.compile(r"^(よろしくお願いします|お願いします|失礼します)[。！!\s]*$"),
    re.compile(r"^(えっと|あの|その|まあ)[、。\s]*$"),
    re.compile(r"(?i)^(yeah|ok(ay)?|uh[- ]?huh|right|sure)[.!?\s]*$"),
]

# kana/kanji runs or latin words
_TOKEN_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FFF]+|[A-Za-z']+")
_FILLER_ONLY_RE = re.compile(r"^[えあうおんー]+$")
_PUNCTUATION_RE = re.compile(r"[、。,.!?！？\s]")

SHORT_TEXT_BASE = 0.3
SHORT_TEXT_SCALE = 0.4
REPEATED_TOKEN_PENALTY = 0.4
HALLUCINATION_PENALTY = 0.2
FILLER_PENALTY = 0.3
PUNCTUATION_PENALTY = 0.5
MAX_PUNCTUATION_RATIO = 0.3


def score_transcript(
    text: str,
    config: Optional[TranscriptGateConfig] = None,
    patterns: Optional[List[Pattern[str]]] = None
) -> float:
    """
    Score how much an ASR transcript can be trusted.

    Starts at 1.0 and multiplies in a penalty for each weakness found:
    short text, a single repeated token, borderline content (bare
    acknowledgements and stock phrases), filler-only speech and a high share
    of punctuation/whitespace. The hard hallucination filter runs first, so
    its patterns are not repeated here.

    Args:
        text: Transcript text
        config: Gate B settings (defaults if omitted)
        patterns: Patterns for the heavy penalty (defaults to ``BORDERLINE_PATTERNS``)

    Returns:
        Score in [0, 1], higher is more reliable
    """
    config = config or TranscriptGateConfig()
    trimmed = text.strip()
    if not trimmed or len(trimmed) < 3:
        return 0.0

    score = 1.0

    if len(trimmed) < config.preferred_chars:
        score *= SHORT_TEXT_BASE + (len(trimmed) / config.preferred_chars) * SHORT_TEXT_SCALE

    tokens = [t.lower() for t in _TOKEN_RE.findall(trimmed)]
    if len(tokens) >= 2 and len(set(tokens)) == 1:
        score *= REPEATED_TOKEN_PENALTY

    if matches_hallucination(trimmed, BORDERLINE_PATTERNS if patterns is None else patterns):
        score *= HALLUCINATION_PENALTY

    if _FILLER_ONLY_RE.match(trimmed):
        score *= FILLER_PENALTY

    punctuation_ratio = len(_PUNCTUATION_RE.findall(trimmed)) / len(trimmed)
    if punctuation_ratio > MAX_PUNCTUATION_RATIO:
        score *= PUNCTUATION_PENALTY

    return max(0.0, min(1.0, score))


def passes_transcript_gate(score: float, config: TranscriptGateConfig) -> bool:
    return score >= config.min_score
