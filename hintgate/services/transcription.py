"""OpenAI speech-to-text collaborator."""
import asyncio
from typing import Optional
from openai import AsyncOpenAI
from hintgate.audio.encoding import pcm_to_wav
from hintgate.core.logging import logger
from hintgate.services.interfaces import Transcriber


class OpenAITranscriber(Transcriber):
    """Sends each accepted segment to ``audio.transcriptions`` as a WAV file."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini-transcribe",
        language: Optional[str] = "ja",
        prompt: Optional[str] = None,
        timeout_s: float = 15.0
    ):
        self.client = client
        self.model = model
        self.language = language
        self.prompt = prompt
        self.timeout_s = timeout_s

    async def transcribe(self, pcm: bytes, sample_rate: int) -> Optional[str]:
        if not pcm:
            return None

        wav = pcm_to_wav(pcm, sample_rate)
        request = {
            "model": self.model,
            "file": ("segment.wav", wav, "audio/wav"),
            "response_format": "json",
        }
        if self.language:
            request["language"] = self.language
        # vocabulary hint only, the model is not forced to emit these words
        if self.prompt:
            request["prompt"] = self.prompt

        audio_seconds = len(pcm) / (sample_rate * 2)
        try:
            response = await asyncio.wait_for(
                self.client.audio.transcriptions.create(**request),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(f"Transcription timed out after {self.timeout_s:.1f}s ({audio_seconds:.2f}s audio)")
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Transcription failed ({audio_seconds:.2f}s audio): {e}")
            return None

        text = (getattr(response, "text", None) or "").strip()
        logger.debug(f"Transcribed {audio_seconds:.2f}s audio with {self.model}: {text!r}")
        return text or None
