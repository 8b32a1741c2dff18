"""Unit tests for segment accumulation and Gate A."""
import pytest
from hintgate.audio.chunk_gate import EMPTY_LEVEL_DB, SegmentAccumulator, evaluate_chunk_quality
from hintgate.audio.vad import frame_level_db
from hintgate.core.config import ChunkGateConfig
from fakes import make_frame, utterance


def fill(accumulator, frames, speech_threshold_db=-35.0):
    for frame in frames:
        level = frame_level_db(frame.pcm_data)
        accumulator.add(frame, level, level > speech_threshold_db)


def test_gate_a_floors():
    config = ChunkGateConfig()

    assert not evaluate_chunk_quality(400.0, 0.5, -30.0, config).skip
    # floors are inclusive
    assert not evaluate_chunk_quality(250.0, 0.2, -50.0, config).skip

    assert evaluate_chunk_quality(249.0, 0.5, -30.0, config).skip
    assert evaluate_chunk_quality(400.0, 0.19, -30.0, config).skip
    assert evaluate_chunk_quality(400.0, 0.5, -50.1, config).skip


def test_empty_segment_is_skipped():
    quality = SegmentAccumulator(300).quality(ChunkGateConfig())
    assert quality.skip
    assert quality.duration_ms == 0.0
    assert quality.voiced_ratio == 0.0
    assert quality.average_level_db == EMPTY_LEVEL_DB


def test_segment_statistics():
    """20 loud + 15 silent 10 ms frames."""
    accumulator = SegmentAccumulator(300)
    fill(accumulator, utterance(200, 150))

    quality = accumulator.quality(ChunkGateConfig())
    assert quality.duration_ms == pytest.approx(350.0)
    assert quality.voiced_ratio == pytest.approx(20 / 35)
    assert quality.average_level_db == pytest.approx((20 * -20.0 + 15 * -80.0) / 35, abs=0.1)
    assert not quality.skip


def test_quiet_segment_is_skipped():
    accumulator = SegmentAccumulator(300)
    fill(accumulator, utterance(100, 150, level_db=-30.0))

    quality = accumulator.quality(ChunkGateConfig())
    # mean level is dragged down by the silent tail
    assert quality.average_level_db < -50.0
    assert quality.skip


def test_preroll_trim_bounds_memory():
    accumulator = SegmentAccumulator(300)
    for frame in [make_frame(None)] * 100:
        fill(accumulator, [frame])
        accumulator.trim_preroll()

    assert accumulator.duration_ms == pytest.approx(300.0)
    assert len(accumulator) == 30


def test_take_pcm_returns_bytes_and_clears():
    accumulator = SegmentAccumulator(300)
    fill(accumulator, utterance(100, 50))

    pcm = accumulator.take_pcm()
    assert isinstance(pcm, bytes)
    assert len(pcm) == 15 * 240 * 2
    assert len(accumulator) == 0
    assert accumulator.duration_ms == 0.0
