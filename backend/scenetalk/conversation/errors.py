from __future__ import annotations
from typing import Optional


class ConversationError(Exception):
	"""Base class for every failure raised by the conversation core."""

	# Human readable text the presentation layer can show as-is
	user_message: str = "Something went wrong. Please try again."

	def __init__(self, message: Optional[str] = None) -> None:
		if message:
			self.user_message = message
		super().__init__(message or self.user_message)


class PermissionDenied(ConversationError):
	user_message = "Microphone access was denied or no microphone is available."


class NoSpeechDetected(ConversationError):
	user_message = "No speech detected. Please try speaking again."


class TranscriptionFailed(ConversationError):
	user_message = "Speech recognition failed. Please try again."


class GenerationDegraded(ConversationError):
	# Logged only; the generator substitutes a generic reply instead of raising this
	user_message = "The reply service is unavailable; a generic reply was used."


class SynthesisProviderFailure(ConversationError):
	user_message = "A speech provider failed."

	def __init__(self, provider: str, message: Optional[str] = None) -> None:
		self.provider = provider
		super().__init__(f"{provider}: {message}" if message else provider)
		# Provider detail goes to the logs only
		self.user_message = type(self).user_message


class SynthesisUnavailable(ConversationError):
	user_message = "Speech is unavailable; showing text only."


class SessionBusy(ConversationError):
	user_message = "Please wait until the current turn has finished."


class SessionNotStarted(ConversationError):
	user_message = "No conversation session has been started."


class InvalidScenario(ConversationError):
	user_message = "Choose either a preset scenario or describe your own, not both."


class ReplayUnavailable(ConversationError):
	user_message = "This line has no recorded audio to replay."
