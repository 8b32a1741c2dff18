"""Construction of OpenAI-backed collaborators and sessions."""
from typing import Optional
from openai import AsyncOpenAI
from hintgate.core.config import PipelineConfig, settings
from hintgate.services.classifier import ChatClassifier, RealtimeClassifier
from hintgate.services.hint_generator import OpenAIHintGenerator
from hintgate.services.interfaces import Classifier
from hintgate.services.session import HintSession
from hintgate.services.transcription import OpenAITranscriber

_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured")
        _client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _client


def build_classifier(client: AsyncOpenAI) -> Classifier:
    if settings.classifier_backend == "realtime":
        return RealtimeClassifier(
            api_key=settings.openai_api_key,
            model=settings.realtime_model,
            url=settings.realtime_url,
            timeout_s=settings.classify_timeout_s
        )
    if settings.classifier_backend == "chat":
        return ChatClassifier(client, model=settings.chat_model, timeout_s=settings.classify_timeout_s)
    raise ValueError(f"Unknown classifier backend: {settings.classifier_backend}")


def build_session(
    session_id: str,
    config: Optional[PipelineConfig] = None,
    hint_prompt: Optional[str] = None
) -> HintSession:
    """Wire a session to the configured OpenAI collaborators."""
    client = get_openai_client()
    config = config or settings.pipeline
    return HintSession(
        session_id,
        transcriber=OpenAITranscriber(
            client,
            model=settings.transcription_model,
            language=settings.transcription_language,
            prompt=settings.transcription_prompt,
            timeout_s=settings.transcription_timeout_s
        ),
        classifier=build_classifier(client),
        hint_generator=OpenAIHintGenerator(
            client,
            prompt=hint_prompt or settings.hint_prompt,
            model=settings.hint_model,
            timeout_s=settings.hint_timeout_s,
            history_limit=config.hint.history_size
        ),
        config=config,
        sample_rate=settings.sample_rate
    )
