"""Segment accumulation and the acoustic quality gate (Gate A)."""
from collections import deque
from dataclasses import dataclass
from typing import Deque
import numpy as np
from hintgate.audio.encoding import concat_pcm
from hintgate.audio.models import AudioFrame, ChunkQuality
from hintgate.core.config import ChunkGateConfig

EMPTY_LEVEL_DB = -100.0


def evaluate_chunk_quality(
    duration_ms: float,
    voiced_ratio: float,
    average_level_db: float,
    config: ChunkGateConfig
) -> ChunkQuality:
    """
    Decide whether a segment carries enough speech to be worth transcribing.

    Args:
        duration_ms: Segment length
        voiced_ratio: Share of samples in frames above the speech threshold
        average_level_db: Mean per-frame level
        config: Gate A floors

    Returns:
        ChunkQuality with skip=True when any floor is not met
    """
    skip = (
        duration_ms < config.min_duration_ms
        or voiced_ratio < config.min_voiced_ratio
        or average_level_db < config.min_level_db
    )
    return ChunkQuality(
        duration_ms=duration_ms,
        average_level_db=average_level_db,
        voiced_ratio=voiced_ratio,
        skip=skip
    )


@dataclass
class _FrameEntry:
    pcm: np.ndarray
    duration_ms: float
    level_db: float
    voiced: bool


class SegmentAccumulator:
    """Collects frames between flushes together with their Gate A statistics."""

    def __init__(self, preroll_ms: float):
        self.preroll_ms = preroll_ms
        self._frames: Deque[_FrameEntry] = deque()
        self._duration_ms = 0.0

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def duration_ms(self) -> float:
        return self._duration_ms

    def add(self, frame: AudioFrame, level_db: float, voiced: bool) -> None:
        entry = _FrameEntry(frame.pcm_data, frame.duration_ms, level_db, voiced)
        self._frames.append(entry)
        self._duration_ms += entry.duration_ms

    def trim_preroll(self) -> None:
        """Drop audio older than the pre-roll window (call only while idle)."""
        while len(self._frames) > 1 and self._duration_ms - self._frames[0].duration_ms >= self.preroll_ms:
            dropped = self._frames.popleft()
            self._duration_ms -= dropped.duration_ms

    def quality(self, config: ChunkGateConfig) -> ChunkQuality:
        total_samples = sum(len(f.pcm) for f in self._frames)
        if total_samples == 0:
            return evaluate_chunk_quality(0.0, 0.0, EMPTY_LEVEL_DB, config)
        voiced_samples = sum(len(f.pcm) for f in self._frames if f.voiced)
        average_level_db = sum(f.level_db for f in self._frames) / len(self._frames)
        return evaluate_chunk_quality(
            self._duration_ms,
            voiced_samples / total_samples,
            average_level_db,
            config
        )

    def take_pcm(self) -> bytes:
        """Return the segment as PCM16 bytes and clear the buffer."""
        pcm = concat_pcm([f.pcm for f in self._frames])
        self.clear()
        return pcm.astype("<i2").tobytes()

    def clear(self) -> None:
        self._frames.clear()
        self._duration_ms = 0.0
