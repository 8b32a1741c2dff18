"""Level-based voice activity detection with hysteresis."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import numpy as np
from hintgate.audio.models import AudioFrame
from hintgate.core.config import VadConfig

LEVEL_FLOOR_DB = -100.0


class VadBoundary(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"
    LONG_UTTERANCE = "long_utterance"


@dataclass
class VadResult:
    """Per-frame VAD outcome."""
    level_db: float
    is_voiced: bool
    boundaries: List[VadBoundary] = field(default_factory=list)

    @property
    def should_flush(self) -> bool:
        return (
            VadBoundary.SPEECH_END in self.boundaries
            or VadBoundary.LONG_UTTERANCE in self.boundaries
        )


def frame_level_db(pcm_i16: np.ndarray) -> float:
    """
    RMS level of a PCM block in dBFS.

    Args:
        pcm_i16: int16 samples

    Returns:
        Level in dB, floored at -100 dB
    """
    if pcm_i16 is None or pcm_i16.size == 0:
        return LEVEL_FLOOR_DB

    # convert to float32 [-1, 1]
    x = pcm_i16.astype(np.float32) / 32768.0
    rms = float(np.sqrt(np.mean(x * x)))
    return max(LEVEL_FLOOR_DB, 20.0 * float(np.log10(rms + 1e-4)))


class VoiceActivityDetector:
    """
    Classifies frames as speech or silence and reports utterance boundaries.

    Two thresholds form a hysteresis band: a frame louder than the speech
    threshold counts towards speech start, a frame quieter than the silence
    threshold counts towards speech end, and anything in between breaks both
    runs. Runs are measured on the audio timeline (sum of frame durations).
    """

    def __init__(self, config: VadConfig):
        if config.silence_threshold_db > config.speech_threshold_db:
            raise ValueError("silence threshold must not exceed speech threshold")
        self.config = config
        self.reset()

    def reset(self) -> None:
        self.in_speech = False
        self.last_speech_at: Optional[float] = None
        self._position_ms = 0.0
        self._speech_run_ms = 0.0
        self._silence_run_ms = 0.0
        self._utterance_anchor_ms = 0.0

    @property
    def pending_speech(self) -> bool:
        """True while a speech run is building up but has not started yet."""
        return not self.in_speech and self._speech_run_ms > 0

    def process(self, frame: AudioFrame) -> VadResult:
        level_db = frame_level_db(frame.pcm_data)
        duration_ms = frame.duration_ms
        self._position_ms += duration_ms

        is_speech = level_db > self.config.speech_threshold_db
        is_silence = level_db < self.config.silence_threshold_db
        result = VadResult(level_db=level_db, is_voiced=is_speech)

        if is_speech:
            if self.in_speech:
                self.last_speech_at = frame.timestamp
            else:
                self._speech_run_ms += duration_ms
                if self._speech_run_ms >= self.config.min_speech_ms:
                    self.in_speech = True
                    self.last_speech_at = frame.timestamp
                    self._speech_run_ms = 0.0
                    self._silence_run_ms = 0.0
                    self._utterance_anchor_ms = self._position_ms
                    result.boundaries.append(VadBoundary.SPEECH_START)
        else:
            self._speech_run_ms = 0.0

        if self.in_speech and is_silence:
            self._silence_run_ms += duration_ms
            if self._silence_run_ms >= self.config.min_silence_ms:
                self.in_speech = False
                self._silence_run_ms = 0.0
                result.boundaries.append(VadBoundary.SPEECH_END)
        elif not is_silence:
            self._silence_run_ms = 0.0

        if self.in_speech and self._position_ms - self._utterance_anchor_ms >= self.config.max_utterance_ms:
            self._utterance_anchor_ms = self._position_ms
            result.boundaries.append(VadBoundary.LONG_UTTERANCE)

        return result
