import asyncio
import json

import httpx
import pytest

from scenetalk.conversation.capture import AudioClip
from scenetalk.conversation.errors import NoSpeechDetected, TranscriptionFailed
from scenetalk.conversation.transcription import (
	TranscriptionClient,
	WhisperTranscriber,
	dedupe_transcript,
)

from fakes import FakeTranscriber

CLIP = AudioClip(b"\x01\x02\x03", "audio/webm")


def test_dedupe_transcript_collapses_repeats():
	assert dedupe_transcript("  I'd  like like a latte latte please ") == "I'd like a latte please"
	assert dedupe_transcript("thank you thank you so much") == "thank you so much"
	assert dedupe_transcript("   ") == ""


def test_transcribe_returns_cleaned_text():
	client = TranscriptionClient(FakeTranscriber(["I'd like a latte please"]))
	transcript = asyncio.run(client.transcribe(CLIP, "en"))
	assert transcript.text == "I'd like a latte please"
	assert transcript.empty is False


@pytest.mark.parametrize("raw", ["", "   ", "\n\t"])
def test_whitespace_result_is_no_speech(raw):
	client = TranscriptionClient(FakeTranscriber([raw]))
	with pytest.raises(NoSpeechDetected):
		asyncio.run(client.transcribe(CLIP, "en"))


def test_empty_clip_is_no_speech_without_calling_backend():
	backend = FakeTranscriber()
	with pytest.raises(NoSpeechDetected):
		asyncio.run(TranscriptionClient(backend).transcribe(AudioClip(b""), "en"))
	assert backend.calls == 0


def test_provider_error_is_transcription_failed():
	client = TranscriptionClient(FakeTranscriber([RuntimeError("503 from provider")]))
	with pytest.raises(TranscriptionFailed):
		asyncio.run(client.transcribe(CLIP, "en"))


def test_timeout_is_transcription_failed():
	backend = FakeTranscriber()
	backend.gate = asyncio.Event()
	client = TranscriptionClient(backend, timeout=0.01)
	with pytest.raises(TranscriptionFailed):
		asyncio.run(client.transcribe(CLIP, "en"))


def test_whisper_backend_posts_clip():
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["auth"] = request.headers["authorization"]
		seen["body"] = request.content
		return httpx.Response(200, json={"text": "good morning good morning"})

	backend = WhisperTranscriber("sk-test", transport=httpx.MockTransport(handler))
	transcript = asyncio.run(TranscriptionClient(backend).transcribe(CLIP, "en"))
	assert transcript.text == "good morning"
	assert seen["auth"] == "Bearer sk-test"
	assert b"whisper-1" in seen["body"]


def test_whisper_http_error_is_transcription_failed():
	transport = httpx.MockTransport(lambda request: httpx.Response(500, content=json.dumps({"error": "x"})))
	backend = WhisperTranscriber("sk-test", transport=transport)
	with pytest.raises(TranscriptionFailed):
		asyncio.run(TranscriptionClient(backend).transcribe(CLIP, "en"))


def test_whisper_without_key_fails():
	with pytest.raises(TranscriptionFailed):
		asyncio.run(TranscriptionClient(WhisperTranscriber(None)).transcribe(CLIP, "en"))
