from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .synthesis import SpeechHandle

logger = logging.getLogger("scenetalk.playback")

# Rough speaking rate used to bound how long a client may take to play a line
CHARS_PER_SECOND = 12.0


class AudioSink(ABC):
	@abstractmethod
	async def play(self, handle: SpeechHandle) -> None:
		"""Play the handle; returns once playback has ended."""


class ClientAudioSink(AudioSink):
	"""Playback performed by the browser.

	``play`` publishes the handle for the client to pick up and waits until the
	client reports the end of playback. A client that never reports back is
	assumed finished after a delay derived from the text length.
	"""

	def __init__(self, grace_seconds: float = 5.0) -> None:
		self.grace_seconds = grace_seconds
		self.current: Optional[Dict[str, Any]] = None
		self.sequence = 0
		self._ended: Optional[asyncio.Future] = None

	def expected_duration(self, handle: SpeechHandle) -> float:
		return self.grace_seconds + len(handle.text) / CHARS_PER_SECOND

	async def play(self, handle: SpeechHandle) -> None:
		loop = asyncio.get_running_loop()
		self.sequence += 1
		self.current = dict(handle.as_dict(), sequence=self.sequence)
		self._ended = loop.create_future()
		timeout = self.expected_duration(handle)
		try:
			await asyncio.wait_for(asyncio.shield(self._ended), timeout=timeout)
		except asyncio.TimeoutError:
			logger.info("No playback-ended report after %.1fs; continuing", timeout)
		finally:
			self._ended = None
			self.current = None

	def notify_ended(self, sequence: Optional[int] = None) -> bool:
		"""Mark the current clip as finished. Returns False when nothing is playing."""
		fut = self._ended
		if fut is None or fut.done():
			return False
		if sequence is not None and sequence != self.sequence:
			return False
		fut.set_result(None)
		return True
