"""Audio data models and structures."""
from dataclasses import dataclass
import numpy as np


@dataclass
class AudioFrame:
    """Represents a single audio frame with metadata."""
    pcm_data: np.ndarray  # int16 PCM samples
    sample_rate: int
    timestamp: float  # Unix timestamp when frame was received
    session_id: str

    def __post_init__(self):
        """Validate frame data."""
        if self.pcm_data.dtype != np.int16:
            raise ValueError(f"Expected int16 PCM, got {self.pcm_data.dtype}")
        if len(self.pcm_data.shape) != 1:
            raise ValueError(f"Expected mono (1D array), got shape {self.pcm_data.shape}")
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate {self.sample_rate}")

    @property
    def duration_ms(self) -> float:
        """Length of the frame on the audio timeline."""
        return len(self.pcm_data) * 1000.0 / self.sample_rate


@dataclass
class ChunkQuality:
    """Gate A verdict for one accumulated segment."""
    duration_ms: float
    average_level_db: float
    voiced_ratio: float
    skip: bool
