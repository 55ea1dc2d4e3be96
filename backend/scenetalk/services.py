from __future__ import annotations
import logging
from typing import Callable, Optional

from .conversation.capture import UploadedAudioDevice
from .conversation.controller import ConversationTurnController
from .conversation.generation import ResponseGenerator
from .conversation.playback import ClientAudioSink
from .conversation.synthesis import SpeechSynthesisChain, build_synthesis_chain
from .conversation.transcription import TranscriptionClient, build_transcription_client
from .gemini_client import GeminiClient
from .settings import settings

logger = logging.getLogger("scenetalk.services")

ControllerFactory = Callable[[Optional[bool]], ConversationTurnController]
SynthesisChainFactory = Callable[[Optional[bool]], SpeechSynthesisChain]

_llm_client: Optional[GeminiClient] = None


def get_llm_client() -> Optional[GeminiClient]:
	"""Shared LLM client, or None when no Gemini key is configured."""
	global _llm_client
	if _llm_client is None and settings.gemini_api_key:
		_llm_client = GeminiClient(timeout=settings.generation_timeout)
	return _llm_client


async def close_llm_client() -> None:
	global _llm_client
	if _llm_client is not None:
		await _llm_client.aclose()
		_llm_client = None


def get_response_generator() -> ResponseGenerator:
	return ResponseGenerator(
		get_llm_client(),
		timeout=settings.generation_timeout,
		history_window=settings.history_window,
	)


def get_transcription_client() -> TranscriptionClient:
	return build_transcription_client(settings)


def get_synthesis_chain_factory() -> SynthesisChainFactory:
	return lambda device_supported=None: build_synthesis_chain(device_supported, settings)


def default_controller_factory(device_speech_supported: Optional[bool] = None) -> ConversationTurnController:
	return ConversationTurnController(
		UploadedAudioDevice(),
		get_transcription_client(),
		get_response_generator(),
		build_synthesis_chain(device_speech_supported, settings),
		ClientAudioSink(settings.playback_grace_seconds),
		ClientAudioSink(settings.playback_grace_seconds),
		language=settings.transcription_language,
		auto_listen_delay=settings.auto_listen_delay,
	)


def get_controller_factory() -> ControllerFactory:
	return default_controller_factory
