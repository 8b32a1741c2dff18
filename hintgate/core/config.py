"""Configuration settings for the hintgate backend."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings
from typing import List, Optional


class VadConfig(BaseModel):
    """Level thresholds and timing for client-side voice activity detection."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    speech_threshold_db: float = -35.0  # level above which a frame counts as speech
    silence_threshold_db: float = -45.0  # level below which a frame counts as silence
    min_speech_ms: float = Field(default=100.0, ge=0)
    min_silence_ms: float = Field(default=150.0, ge=0)
    max_utterance_ms: float = Field(default=5000.0, gt=0)  # forced flush ceiling
    preroll_ms: float = Field(default=300.0, ge=0)  # audio kept before speech starts


class ChunkGateConfig(BaseModel):
    """Gate A: minimum acoustic quality before a segment is transcribed."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_duration_ms: float = 250.0
    min_voiced_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    min_level_db: float = -50.0


class TranscriptGateConfig(BaseModel):
    """Hallucination filter and Gate B settings."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_chars: int = Field(default=3, ge=0)  # hard floor of the hallucination filter
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    preferred_chars: int = Field(default=6, ge=1)  # below this the short-text penalty applies
    extra_hallucination_patterns: List[str] = Field(default_factory=list)


class ConfirmGateConfig(BaseModel):
    """Gate C: confidence floors and multi-hit corroboration."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_confidence: float = Field(default=0.75, ge=0.0, le=1.0)
    high_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    multi_hit_window_ms: float = Field(default=1500.0, gt=0)
    multi_hit_count: int = Field(default=2, ge=1)
    ring_buffer_size: int = Field(default=10, ge=1)


class HintTimingConfig(BaseModel):
    """Provisional hint lifecycle timing."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    debounce_ms: float = Field(default=1500.0, ge=0)
    confirm_delay_ms: float = Field(default=800.0, ge=0)
    history_size: int = Field(default=10, ge=0)  # transcripts kept as hint context


class PipelineConfig(BaseModel):
    """Every gating threshold of a session, fixed for the session lifetime."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    vad: VadConfig = Field(default_factory=VadConfig)
    chunk_gate: ChunkGateConfig = Field(default_factory=ChunkGateConfig)
    transcript_gate: TranscriptGateConfig = Field(default_factory=TranscriptGateConfig)
    confirm_gate: ConfirmGateConfig = Field(default_factory=ConfirmGateConfig)
    hint: HintTimingConfig = Field(default_factory=HintTimingConfig)

    def with_overrides(self, overrides: Optional[dict]) -> "PipelineConfig":
        """Return a validated copy with per-section overrides applied."""
        if not overrides:
            return self
        merged = self.model_dump()
        for section, values in overrides.items():
            if section in merged and isinstance(values, dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return PipelineConfig.model_validate(merged)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Audio settings
    sample_rate: int = 24000  # Hz
    channels: int = 1  # mono
    bit_depth: int = 16  # 16-bit PCM

    # OpenAI collaborators
    openai_api_key: Optional[str] = None
    transcription_model: str = "gpt-4o-mini-transcribe"
    transcription_language: Optional[str] = "ja"
    transcription_prompt: Optional[str] = None  # vocabulary hint for the ASR model
    transcription_timeout_s: float = 15.0

    classifier_backend: str = "realtime"  # "realtime" or "chat"
    realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    realtime_url: str = "wss://api.openai.com/v1/realtime"
    chat_model: str = "gpt-4o-mini"
    classify_timeout_s: float = 10.0

    hint_model: str = "gpt-4o-mini"
    hint_prompt: str = (
        "検出された内容に応じて、営業マンとして次にやるべきことの適切なヒントを、10文字以内で出して"
    )
    hint_timeout_s: float = 10.0

    # Pipeline defaults (override with e.g. PIPELINE__CONFIRM_GATE__MIN_CONFIDENCE=0.8)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # Performance settings
    max_concurrent_sessions: int = 10

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


settings = Settings()
