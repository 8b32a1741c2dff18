"""PCM helpers for handing audio segments to external services."""
import io
import wave
import numpy as np
from typing import List
from hintgate.core.logging import logger


def concat_pcm(chunks: List[np.ndarray]) -> np.ndarray:
    """
    Concatenate PCM blocks into one continuous int16 array.

    Args:
        chunks: int16 sample blocks in arrival order

    Returns:
        Concatenated numpy array of PCM samples
    """
    if not chunks:
        return np.array([], dtype=np.int16)
    return np.concatenate(chunks).astype(np.int16, copy=False)


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    """
    Wrap raw PCM in a RIFF/WAVE container.

    Args:
        pcm: Raw little-endian PCM bytes
        sample_rate: Sample rate in Hz
        channels: Channel count
        sample_width: Bytes per sample

    Returns:
        Complete WAV file bytes
    """
    if len(pcm) % (channels * sample_width) != 0:
        logger.warning(f"PCM length {len(pcm)} is not a whole number of frames, truncating")
        pcm = pcm[: len(pcm) - len(pcm) % (channels * sample_width)]

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()
