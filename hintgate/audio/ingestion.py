"""Helper functions for ingesting and converting incoming audio data."""
import numpy as np
import time
from typing import Optional
from hintgate.audio.models import AudioFrame
from hintgate.core.config import settings
from hintgate.core.logging import logger


def bytes_to_audio_frame(
    data: bytes,
    session_id: str,
    sample_rate: Optional[int] = None,
    timestamp: Optional[float] = None
) -> AudioFrame:
    """
    Convert raw little-endian PCM16 bytes to an AudioFrame.

    Args:
        data: Raw PCM int16 bytes
        session_id: Session the frame belongs to
        sample_rate: Sample rate (defaults to config value)
        timestamp: Arrival time (defaults to now)

    Returns:
        AudioFrame object
    """
    if sample_rate is None:
        sample_rate = settings.sample_rate

    pcm_array = np.frombuffer(data, dtype="<i2").astype(np.int16, copy=False)

    return AudioFrame(
        pcm_data=pcm_array,
        sample_rate=sample_rate,
        timestamp=time.time() if timestamp is None else timestamp,
        session_id=session_id
    )


def validate_audio_data(data: bytes, max_size: Optional[int] = None) -> bool:
    """
    Validate incoming audio data.

    Args:
        data: Raw audio bytes
        max_size: Largest accepted frame in bytes (optional)

    Returns:
        True if valid, False otherwise
    """
    if len(data) == 0:
        logger.warning("Received empty audio data")
        return False

    # int16 = 2 bytes per sample
    if len(data) % 2 != 0:
        logger.warning(f"Audio data size {len(data)} is not multiple of 2 bytes")
        return False

    if max_size and len(data) > max_size:
        logger.warning(f"Audio data size {len(data)} exceeds maximum {max_size}")
        return False

    return True
