"""Unit tests for the OpenAI transcription and hint generation collaborators."""
import asyncio
import io
import wave
from types import SimpleNamespace
from hintgate.services.hint_generator import (
    FALLBACK_EMPTY_HINT,
    FALLBACK_ERROR_HINT,
    OpenAIHintGenerator,
    build_hint_prompt,
)
from hintgate.services.transcription import OpenAITranscriber
from fakes import label


class FakeEndpoint:
    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def transcription_client(endpoint):
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=endpoint))


def chat_client(endpoint):
    return SimpleNamespace(chat=SimpleNamespace(completions=endpoint))


def chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


PCM = b"\x00\x01" * 2400


def test_transcriber_sends_wav_and_strips_text():
    endpoint = FakeEndpoint(SimpleNamespace(text="  こんにちは  "))
    transcriber = OpenAITranscriber(transcription_client(endpoint), language="ja", prompt="見積もり, 契約")

    assert asyncio.run(transcriber.transcribe(PCM, 24000)) == "こんにちは"

    [request] = endpoint.requests
    assert request["model"] == "gpt-4o-mini-transcribe"
    assert request["language"] == "ja"
    assert request["prompt"] == "見積もり, 契約"
    name, wav, content_type = request["file"]
    assert name.endswith(".wav")
    assert content_type == "audio/wav"
    with wave.open(io.BytesIO(wav)) as reader:
        assert reader.getframerate() == 24000
        assert reader.getnchannels() == 1
        assert reader.getnframes() == 2400


def test_transcriber_omits_optional_fields():
    endpoint = FakeEndpoint(SimpleNamespace(text="hello"))
    transcriber = OpenAITranscriber(transcription_client(endpoint), language=None)
    asyncio.run(transcriber.transcribe(PCM, 24000))

    [request] = endpoint.requests
    assert "language" not in request
    assert "prompt" not in request


def test_transcriber_failures_become_none():
    failing = OpenAITranscriber(transcription_client(FakeEndpoint(error=RuntimeError("503"))))
    assert asyncio.run(failing.transcribe(PCM, 24000)) is None

    slow = OpenAITranscriber(transcription_client(FakeEndpoint(SimpleNamespace(text="late"), delay=1.0)), timeout_s=0.05)
    assert asyncio.run(slow.transcribe(PCM, 24000)) is None

    blank = OpenAITranscriber(transcription_client(FakeEndpoint(SimpleNamespace(text="   "))))
    assert asyncio.run(blank.transcribe(PCM, 24000)) is None


def test_transcriber_skips_empty_audio():
    endpoint = FakeEndpoint(SimpleNamespace(text="hello"))
    assert asyncio.run(OpenAITranscriber(transcription_client(endpoint)).transcribe(b"", 24000)) is None
    assert endpoint.requests == []


def test_hint_prompt_contents():
    prompt = build_hint_prompt("10文字以内で", label("proposal", display_name="Proposal"), "ご提案", ["a", "b"])
    assert "10文字以内で" in prompt
    assert "Proposal" in prompt
    assert "ご提案" in prompt
    assert "a\nb" in prompt


def test_hint_generator_returns_stripped_text():
    endpoint = FakeEndpoint(chat_response("  資料を見せる \n"))
    generator = OpenAIHintGenerator(chat_client(endpoint), prompt="10文字以内で", history_limit=2)

    hint = asyncio.run(generator.generate(label("proposal"), "ご提案", ["alpha", "beta", "gamma"]))
    assert hint == "資料を見せる"

    [request] = endpoint.requests
    assert request["max_tokens"] == 50
    assert request["temperature"] == 0.7
    system = request["messages"][0]["content"]
    # only the most recent history lines are sent
    assert "beta\ngamma" in system
    assert "alpha" not in system


def test_hint_generator_fallbacks():
    empty = OpenAIHintGenerator(chat_client(FakeEndpoint(chat_response(""))), prompt="p")
    assert asyncio.run(empty.generate(label("proposal"), "x", [])) == FALLBACK_EMPTY_HINT

    failing = OpenAIHintGenerator(chat_client(FakeEndpoint(error=RuntimeError("boom"))), prompt="p")
    assert asyncio.run(failing.generate(label("proposal"), "x", [])) == FALLBACK_ERROR_HINT

    slow = OpenAIHintGenerator(
        chat_client(FakeEndpoint(chat_response("late"), delay=1.0)), prompt="p", timeout_s=0.05
    )
    assert asyncio.run(slow.generate(label("proposal"), "x", [])) == FALLBACK_ERROR_HINT
