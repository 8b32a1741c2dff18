"""Unit tests for voice activity detection."""
import numpy as np
import pytest
from hintgate.audio.vad import LEVEL_FLOOR_DB, VadBoundary, VoiceActivityDetector, frame_level_db
from hintgate.core.config import VadConfig
from fakes import make_frame, utterance


def run(vad, frames):
    """Return (frame index, boundary) pairs for the whole stream."""
    events = []
    for index, frame in enumerate(frames):
        for boundary in vad.process(frame).boundaries:
            events.append((index, boundary))
    return events


def test_frame_level_db():
    """Level is RMS in dBFS with a floor."""
    assert frame_level_db(np.array([], dtype=np.int16)) == LEVEL_FLOOR_DB
    # digital silence sits at the epsilon level, 20*log10(1e-4)
    assert frame_level_db(np.zeros(240, dtype=np.int16)) == pytest.approx(-80.0)
    assert frame_level_db(np.full(240, 32767, dtype=np.int16)) == pytest.approx(0.0, abs=0.01)
    assert frame_level_db(make_frame(-20.0).pcm_data) == pytest.approx(-20.0, abs=0.05)


def test_silent_stream_has_no_boundaries():
    vad = VoiceActivityDetector(VadConfig())
    assert run(vad, [make_frame(None) for _ in range(300)]) == []
    assert not vad.in_speech
    assert vad.last_speech_at is None


def test_speech_then_silence_gives_one_start_and_one_end():
    """200 ms above the speech threshold then 150 ms below the silence threshold."""
    vad = VoiceActivityDetector(VadConfig())
    events = run(vad, utterance(200, 150))

    # 100 ms of speech (10th frame) starts, 150 ms of silence (15th silent frame) ends
    assert events == [(9, VadBoundary.SPEECH_START), (34, VadBoundary.SPEECH_END)]
    assert not vad.in_speech


def test_short_spike_does_not_start_speech():
    vad = VoiceActivityDetector(VadConfig())
    assert run(vad, utterance(50, 300)) == []


def test_hysteresis_band_interrupts_pending_speech():
    vad = VoiceActivityDetector(VadConfig())
    frames = [make_frame(-20.0)] * 5 + [make_frame(-40.0)] + [make_frame(-20.0)] * 5
    assert run(vad, frames) == []
    assert vad.pending_speech

    # five more loud frames complete a fresh 100 ms run
    assert run(vad, [make_frame(-20.0)] * 5) == [(4, VadBoundary.SPEECH_START)]


def test_hysteresis_band_keeps_speech_alive():
    vad = VoiceActivityDetector(VadConfig())
    run(vad, [make_frame(-20.0)] * 10)
    assert vad.in_speech

    # band-level frames are neither speech nor silence
    assert run(vad, [make_frame(-40.0)] * 30) == []
    assert vad.in_speech

    # a band frame resets the silence run
    frames = [make_frame(None)] * 10 + [make_frame(-40.0)] + [make_frame(None)] * 10
    assert run(vad, frames) == []
    assert vad.in_speech

    assert run(vad, [make_frame(None)] * 5) == [(4, VadBoundary.SPEECH_END)]


def test_long_utterance_forces_flush():
    vad = VoiceActivityDetector(VadConfig())
    events = run(vad, [make_frame(-20.0)] * 600)

    # speech starts at 100 ms, the ceiling is reached 5000 ms later
    assert events == [(9, VadBoundary.SPEECH_START), (509, VadBoundary.LONG_UTTERANCE)]
    assert vad.in_speech


def test_flush_flag():
    vad = VoiceActivityDetector(VadConfig(max_utterance_ms=200))
    results = [vad.process(frame) for frame in [make_frame(-20.0)] * 30]
    flushes = [i for i, r in enumerate(results) if r.should_flush]
    assert flushes == [29]
    assert all(r.is_voiced for r in results)


def test_reset_forgets_speech():
    vad = VoiceActivityDetector(VadConfig())
    run(vad, [make_frame(-20.0)] * 12)
    assert vad.in_speech

    vad.reset()
    assert not vad.in_speech
    assert not vad.pending_speech
    assert vad.last_speech_at is None


def test_silence_threshold_above_speech_threshold_rejected():
    with pytest.raises(ValueError):
        VoiceActivityDetector(VadConfig(speech_threshold_db=-50.0, silence_threshold_db=-40.0))
