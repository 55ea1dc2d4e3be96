from __future__ import annotations
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import PermissionDenied

logger = logging.getLogger("scenetalk.capture")

# Decibel window mapped onto the 0..100 level scale
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


@dataclass(frozen=True)
class AudioClip:
	data: bytes
	mime_type: str = "audio/webm"

	def __len__(self) -> int:
		return len(self.data)


class CaptureStream(ABC):
	"""An open microphone stream recording a single clip."""

	@abstractmethod
	def latest_block(self) -> Optional[np.ndarray]:
		"""Most recent PCM block as float samples in [-1, 1], if any."""

	@abstractmethod
	def finish(self) -> AudioClip:
		...

	@abstractmethod
	def close(self) -> None:
		...

	@property
	@abstractmethod
	def closed(self) -> bool:
		...


class CaptureDevice(ABC):
	@abstractmethod
	def open(self, *, echo_cancellation: bool = True, noise_suppression: bool = True) -> CaptureStream:
		"""Acquire the input device.

		Raises:
			PermissionDenied: Access refused or no input device present
		"""


class UploadedAudioStream(CaptureStream):
	"""Stream fed with chunks recorded by the browser and posted to the API."""

	def __init__(self, mime_type: str) -> None:
		self.mime_type = mime_type
		self._buffer = bytearray()
		self._last_chunk: bytes = b""
		self._closed = False

	def feed(self, chunk: bytes) -> None:
		if self._closed:
			raise RuntimeError("capture stream is closed")
		if not chunk:
			return
		self._buffer.extend(chunk)
		self._last_chunk = bytes(chunk)

	def latest_block(self) -> Optional[np.ndarray]:
		data = self._last_chunk[: len(self._last_chunk) - (len(self._last_chunk) % 2)]
		if not data:
			return None
		return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0

	def finish(self) -> AudioClip:
		return AudioClip(data=bytes(self._buffer), mime_type=self.mime_type)

	def close(self) -> None:
		self._closed = True
		self._buffer = bytearray()
		self._last_chunk = b""

	@property
	def closed(self) -> bool:
		return self._closed


class UploadedAudioDevice(CaptureDevice):
	"""Capture device backed by audio the client uploads.

	The browser owns the real microphone; when it reports that none is
	available (or access was refused) opening the device fails.
	"""

	def __init__(self, mime_type: str = "audio/webm") -> None:
		self.mime_type = mime_type
		self.microphone_available = True
		self.stream: Optional[UploadedAudioStream] = None

	def open(self, *, echo_cancellation: bool = True, noise_suppression: bool = True) -> UploadedAudioStream:
		if not self.microphone_available:
			raise PermissionDenied()
		self.stream = UploadedAudioStream(self.mime_type)
		return self.stream


def decode_audio_payload(data: str) -> bytes:
	"""Decode base64 audio sent by a client, with or without a ``data:`` URL prefix.

	Raises:
		ValueError: If the payload is not valid base64
	"""
	payload = data.split(",", 1)[1] if data.startswith("data:") else data
	try:
		return base64.b64decode(payload, validate=True)
	except (binascii.Error, ValueError) as e:
		raise ValueError("audio is not valid base64") from e


def spectrum_level(block: Optional[np.ndarray]) -> int:
	"""Map the frequency-domain energy of a PCM block onto 0..100."""
	if block is None or block.size == 0:
		return 0
	window = np.hanning(block.size) if block.size > 1 else np.ones(1)
	magnitude = np.abs(np.fft.rfft(block * window)) / block.size
	decibels = 20.0 * np.log10(np.maximum(magnitude, 1e-12))
	scaled = (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
	value = float(np.clip(scaled, 0.0, 1.0).mean()) * 100.0
	return int(round(max(0.0, min(100.0, value))))


class AudioCaptureSession:
	"""Turns a start/stop gesture pair into one finalized clip."""

	def __init__(self, device: CaptureDevice) -> None:
		self.device = device
		self._stream: Optional[CaptureStream] = None

	@property
	def active(self) -> bool:
		return self._stream is not None

	def start(self) -> None:
		if self._stream is not None:
			return
		# PermissionDenied propagates; the user retries manually
		self._stream = self.device.open(echo_cancellation=True, noise_suppression=True)
		logger.debug("Capture started")

	def feed(self, chunk: bytes) -> None:
		stream = self._stream
		if stream is None or not hasattr(stream, "feed"):
			raise RuntimeError("capture is not active")
		stream.feed(chunk)

	@property
	def level(self) -> int:
		if self._stream is None:
			return 0
		try:
			return spectrum_level(self._stream.latest_block())
		except Exception as e:
			logger.debug("Level computation failed: %s", e)
			return 0

	def stop(self) -> Optional[AudioClip]:
		stream = self._stream
		if stream is None:
			return None
		self._stream = None
		try:
			clip = stream.finish()
		finally:
			stream.close()
		logger.debug("Capture stopped, %d bytes", len(clip))
		return clip

	def release(self) -> None:
		"""Close the stream without producing a clip."""
		stream = self._stream
		self._stream = None
		if stream is not None:
			stream.close()
