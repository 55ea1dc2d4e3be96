from __future__ import annotations
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from google.api_core.exceptions import GoogleAPIError
from google.cloud import speech_v1p1beta1 as speech

from ..settings import Settings, settings as default_settings
from .capture import AudioClip
from .errors import NoSpeechDetected, TranscriptionFailed

logger = logging.getLogger("scenetalk.transcription")

_LANGUAGE_CODES = {"en": "en-US", "ko": "ko-KR"}


@dataclass(frozen=True)
class Transcript:
	text: str
	empty: bool = False


def dedupe_transcript(text: str) -> str:
	"""Collapse repeated 1–3 word phrases and extra whitespace in a transcript.

	Recognizers often repeat phrases where interim and final results overlap.
	"""
	s = re.sub(r"\s+", " ", text or "").strip()
	if not s:
		return s
	patterns = [
		(r"\b(\w+\s+\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+)(?:\s+\1\b)+", r"\1"),
	]
	for pat, rep in patterns:
		s = re.sub(pat, rep, s, flags=re.IGNORECASE)
	return re.sub(r"\s+", " ", s).strip()


class Transcriber(ABC):
	"""Speech-to-text backend. Returns raw text; empty text means no speech."""

	name: str = "transcriber"

	@abstractmethod
	async def recognize(self, clip: AudioClip, language_hint: str) -> str:
		...


class GoogleSpeechTranscriber(Transcriber):
	name = "google"

	def __init__(self, client: Optional[speech.SpeechClient] = None) -> None:
		self._client = client

	def _get_client(self) -> speech.SpeechClient:
		if self._client is None:
			self._client = speech.SpeechClient()
		return self._client

	def _recognize_sync(self, clip: AudioClip, language_hint: str) -> str:
		config = speech.RecognitionConfig(
			language_code=_LANGUAGE_CODES.get(language_hint, language_hint or "en-US"),
			model="default",
			enable_automatic_punctuation=True,
			use_enhanced=True,
		)
		if "webm" in clip.mime_type:
			config.encoding = speech.RecognitionConfig.AudioEncoding.WEBM_OPUS
			config.sample_rate_hertz = 48000
		audio = speech.RecognitionAudio(content=clip.data)
		response = self._get_client().recognize(config=config, audio=audio)
		parts = [r.alternatives[0].transcript for r in response.results if r.alternatives]
		return " ".join(parts)

	async def recognize(self, clip: AudioClip, language_hint: str) -> str:
		# The Google client is blocking
		return await asyncio.to_thread(self._recognize_sync, clip, language_hint)


class WhisperTranscriber(Transcriber):
	name = "whisper"

	def __init__(
		self,
		api_key: Optional[str],
		*,
		base_url: str = "https://api.openai.com/v1/audio/transcriptions",
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key
		self.base_url = base_url
		self._transport = transport

	async def recognize(self, clip: AudioClip, language_hint: str) -> str:
		if not self.api_key:
			raise RuntimeError("OPENAI_API_KEY is not configured")
		extension = clip.mime_type.split("/")[-1].split(";")[0] or "webm"
		files = {"file": (f"audio.{extension}", clip.data, clip.mime_type)}
		data = {
			"model": "whisper-1",
			"language": language_hint or "en",
			"response_format": "json",
			"temperature": "0.2",
		}
		async with httpx.AsyncClient(transport=self._transport) as client:
			r = await client.post(
				self.base_url,
				headers={"Authorization": f"Bearer {self.api_key}"},
				data=data,
				files=files,
			)
			r.raise_for_status()
			return str(r.json().get("text") or "")


class TranscriptionClient:
	"""Turns a recorded clip into cleaned text.

	Raises NoSpeechDetected for empty results and TranscriptionFailed for
	provider errors and timeouts.
	"""

	def __init__(self, backend: Transcriber, *, timeout: float = 20.0) -> None:
		self.backend = backend
		self.timeout = timeout

	async def transcribe(self, clip: AudioClip, language_hint: str = "en") -> Transcript:
		if not clip.data:
			raise NoSpeechDetected()
		try:
			raw = await asyncio.wait_for(self.backend.recognize(clip, language_hint), timeout=self.timeout)
		except asyncio.TimeoutError as e:
			logger.warning("Transcription via %s timed out after %.1fs", self.backend.name, self.timeout)
			raise TranscriptionFailed("Speech recognition timed out. Please try again.") from e
		except (GoogleAPIError, httpx.HTTPError) as e:
			logger.warning("Transcription via %s failed: %s", self.backend.name, e)
			raise TranscriptionFailed() from e
		except Exception as e:
			logger.exception("Transcription via %s raised", self.backend.name)
			raise TranscriptionFailed() from e
		text = dedupe_transcript(raw)
		if not text:
			raise NoSpeechDetected()
		return Transcript(text=text, empty=False)


def build_transcription_client(config: Optional[Settings] = None) -> TranscriptionClient:
	cfg = config or default_settings
	if cfg.transcription_backend == "whisper":
		backend: Transcriber = WhisperTranscriber(cfg.openai_api_key)
	else:
		backend = GoogleSpeechTranscriber()
	return TranscriptionClient(backend, timeout=cfg.transcription_timeout)
