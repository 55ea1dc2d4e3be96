from __future__ import annotations
import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from ..settings import Settings, settings as default_settings
from . import voices
from .errors import SynthesisProviderFailure, SynthesisUnavailable

logger = logging.getLogger("scenetalk.synthesis")

DEVICE_PROVIDER = "device"

EMOTION_SPEEDS: Dict[str, float] = {
	"excited": 1.1,
	"happy": 1.05,
	"friendly": 1.0,
	"neutral": 1.0,
	"professional": 0.95,
	"concerned": 0.9,
	"calm": 0.85,
}


@dataclass(frozen=True)
class SpeechHandle:
	"""Playable result of synthesis and the provider that served it."""

	text: str
	provider: str
	audio_url: Optional[str] = None
	# Set for on-device speech: text, pitch, rate, voice_selector
	device_params: Optional[Dict[str, Any]] = None

	@property
	def replayable(self) -> bool:
		return self.audio_url is not None

	def as_dict(self) -> Dict[str, Any]:
		return {
			"text": self.text,
			"provider": self.provider,
			"audio_url": self.audio_url,
			"device_params": self.device_params,
			"replayable": self.replayable,
		}


def to_data_url(audio: bytes, mime_type: str) -> str:
	return f"data:{mime_type};base64,{base64.b64encode(audio).decode('ascii')}"


class SpeechProvider(ABC):
	name: str = "provider"
	default_voice: str = ""
	voice_map: Mapping[str, str] = {}

	def voice_for(self, profile: str) -> str:
		return voices.resolve_voice(profile, self.voice_map, self.default_voice)

	@abstractmethod
	async def synthesize(self, text: str, voice: str, emotion: Optional[str] = None) -> str:
		"""Return a playable audio URL or raise on failure."""


class HttpSpeechProvider(SpeechProvider):
	"""Provider reached over HTTP; non-2xx responses raise."""

	def __init__(self, api_key: Optional[str], *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self.api_key = api_key
		self._transport = transport

	def _require_key(self) -> str:
		if not self.api_key:
			raise SynthesisProviderFailure(self.name, "API key is not configured")
		return self.api_key

	async def _post(self, url: str, *, headers: Dict[str, str], payload: Dict[str, Any]) -> httpx.Response:
		async with httpx.AsyncClient(transport=self._transport) as client:
			r = await client.post(url, headers=headers, json=payload)
			r.raise_for_status()
			return r


class OpenAITTSProvider(HttpSpeechProvider):
	name = "openai"
	default_voice = voices.OPENAI_DEFAULT_VOICE
	voice_map = voices.OPENAI_VOICES
	url = "https://api.openai.com/v1/audio/speech"

	async def synthesize(self, text: str, voice: str, emotion: Optional[str] = None) -> str:
		key = self._require_key()
		payload = {
			"model": "tts-1-hd",
			"voice": voice,
			"input": text,
			"response_format": "mp3",
			"speed": EMOTION_SPEEDS.get(emotion or "neutral", 1.0),
		}
		r = await self._post(self.url, headers={"Authorization": f"Bearer {key}"}, payload=payload)
		return to_data_url(r.content, "audio/mp3")


class ElevenLabsProvider(HttpSpeechProvider):
	name = "elevenlabs"
	default_voice = voices.ELEVENLABS_DEFAULT_VOICE
	voice_map = voices.ELEVENLABS_VOICES
	url = "https://api.elevenlabs.io/v1/text-to-speech/{voice}"

	async def synthesize(self, text: str, voice: str, emotion: Optional[str] = None) -> str:
		key = self._require_key()
		payload = {
			"text": text,
			"model_id": "eleven_monolingual_v1",
			"voice_settings": {"stability": 0.5, "similarity_boost": 0.5, "style": 0.0, "use_speaker_boost": True},
		}
		headers = {"Accept": "audio/mpeg", "xi-api-key": key}
		r = await self._post(self.url.format(voice=voice), headers=headers, payload=payload)
		return to_data_url(r.content, "audio/mpeg")


class SupertoneProvider(HttpSpeechProvider):
	name = "supertone"
	default_voice = voices.SUPERTONE_DEFAULT_VOICE
	voice_map = voices.SUPERTONE_VOICES
	url = "https://supertoneapi.com/v1/text-to-speech/{voice}"

	async def synthesize(self, text: str, voice: str, emotion: Optional[str] = None) -> str:
		key = self._require_key()
		payload = {
			"text": text,
			"language": "en",
			"style": "neutral",
			"model": "sona_speech_1",
			"output_format": "wav",
			"voice_settings": {"pitch_shift": 0, "pitch_variance": 1, "speed": 1},
		}
		r = await self._post(self.url.format(voice=voice), headers={"x-sup-api-key": key}, payload=payload)
		return to_data_url(r.content, "audio/wav")


class JsonSpeechProvider(HttpSpeechProvider):
	"""Generic provider answering ``POST {text, voiceId, emotion}`` with ``{"audioUrl": ...}``."""

	def __init__(
		self,
		name: str,
		url: str,
		*,
		api_key: Optional[str] = None,
		voice_map: Optional[Mapping[str, str]] = None,
		default_voice: str = "default",
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		super().__init__(api_key, transport=transport)
		self.name = name
		self.url = url
		self.voice_map = dict(voice_map or {})
		self.default_voice = default_voice

	async def synthesize(self, text: str, voice: str, emotion: Optional[str] = None) -> str:
		headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
		payload = {"text": text, "voiceId": voice, "emotion": emotion}
		r = await self._post(self.url, headers=headers, payload=payload)
		audio_url = (r.json() or {}).get("audioUrl")
		if not audio_url:
			raise SynthesisProviderFailure(self.name, "response carried no audioUrl")
		return str(audio_url)


class DeviceSpeechFallback:
	"""On-device speech done by the client; carries only the parameters it needs."""

	def __init__(self, supported: bool = True) -> None:
		self.supported = supported

	def speak(self, text: str, profile: str) -> SpeechHandle:
		if not self.supported:
			raise SynthesisUnavailable()
		params: Dict[str, Any] = {"text": text}
		params.update(voices.device_params(profile))
		return SpeechHandle(text=text, provider=DEVICE_PROVIDER, device_params=params)


@dataclass
class SpeechSynthesisChain:
	"""Tries each remote provider in order, then on-device speech."""

	providers: Sequence[SpeechProvider]
	device: Optional[DeviceSpeechFallback] = None
	timeout: float = 15.0
	attempts: List[str] = field(default_factory=list)

	async def synthesize(self, text: str, profile: str, emotion: Optional[str] = None) -> SpeechHandle:
		self.attempts = []
		for provider in self.providers:
			self.attempts.append(provider.name)
			voice = provider.voice_for(profile)
			try:
				audio_url = await asyncio.wait_for(provider.synthesize(text, voice, emotion), timeout=self.timeout)
			except asyncio.TimeoutError:
				logger.warning("%s", SynthesisProviderFailure(provider.name, f"timed out after {self.timeout:.1f}s"))
				continue
			except Exception as e:
				failure = e if isinstance(e, SynthesisProviderFailure) else SynthesisProviderFailure(provider.name, repr(e))
				logger.warning("%s", failure)
				continue
			if not audio_url:
				logger.warning("%s", SynthesisProviderFailure(provider.name, "empty audio url"))
				continue
			return SpeechHandle(text=text, provider=provider.name, audio_url=audio_url)
		self.attempts.append(DEVICE_PROVIDER)
		if self.device is None:
			raise SynthesisUnavailable()
		logger.info("All remote speech providers failed; using system voice")
		return self.device.speak(text, profile)


_PROVIDER_CLASSES = {
	"openai": (OpenAITTSProvider, "openai_api_key"),
	"elevenlabs": (ElevenLabsProvider, "elevenlabs_api_key"),
	"supertone": (SupertoneProvider, "supertone_api_key"),
}


def build_remote_providers(config: Optional[Settings] = None) -> List[SpeechProvider]:
	cfg = config or default_settings
	providers: List[SpeechProvider] = []
	for name in cfg.tts_provider_names():
		if name == "custom":
			if not cfg.custom_tts_url:
				logger.warning("Speech provider 'custom' listed but CUSTOM_TTS_URL is not set")
				continue
			providers.append(JsonSpeechProvider("custom", cfg.custom_tts_url, api_key=cfg.custom_tts_api_key))
			continue
		entry = _PROVIDER_CLASSES.get(name)
		if entry is None:
			logger.warning("Unknown speech provider %r ignored", name)
			continue
		cls, key_attr = entry
		providers.append(cls(getattr(cfg, key_attr)))
	return providers


def build_synthesis_chain(device_supported: Optional[bool] = None, config: Optional[Settings] = None) -> SpeechSynthesisChain:
	cfg = config or default_settings
	supported = cfg.device_speech_supported if device_supported is None else device_supported
	return SpeechSynthesisChain(
		providers=build_remote_providers(cfg),
		device=DeviceSpeechFallback(supported),
		timeout=cfg.synthesis_timeout,
	)
