"""
Conversation Turn Controller
============================

Owns one ConversationSession and sequences a spoken turn:

    idle -> listening -> transcribing -> generating -> synthesizing -> playing -> idle

with an ``error`` state that is reported and then left for ``idle``. Only one
turn pipeline runs at a time. Every stage result is checked against the
session generation counter, so work finishing after a reset or close is
dropped instead of being applied to the new session.

Failure policy:
- PermissionDenied: reported, the user retries manually
- NoSpeechDetected: no turn is recorded, the user is asked to speak again
- TranscriptionFailed: reported, the turn is aborted
- reply generation never fails outward (generic reply)
- synthesis falls back through providers; when nothing can speak the reply
  the session continues text-only
"""

from __future__ import annotations
import asyncio
import logging
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from .capture import AudioCaptureSession, AudioClip, CaptureDevice
from .catalog import SceneConfig, opening_line, scene_description, scene_for
from .errors import (
	ConversationError,
	NoSpeechDetected,
	PermissionDenied,
	ReplayUnavailable,
	SessionBusy,
	SessionNotStarted,
	SynthesisUnavailable,
	TranscriptionFailed,
)
from .events import ConversationEvent, ConversationEventBus, EventType
from .generation import ResponseGenerator
from .models import (
	OPENING_PROGRESS,
	Audience,
	Character,
	ConversationSession,
	Feedback,
	Scenario,
	Turn,
)
from .playback import AudioSink
from .synthesis import DEVICE_PROVIDER, SpeechHandle, SpeechSynthesisChain
from .transcription import TranscriptionClient
from .voices import voice_profile

logger = logging.getLogger("scenetalk.controller")


class ControllerState(str, Enum):
	IDLE = "idle"
	LISTENING = "listening"
	TRANSCRIBING = "transcribing"
	GENERATING = "generating"
	SYNTHESIZING = "synthesizing"
	PLAYING = "playing"
	ERROR = "error"


class ConversationView(BaseModel):
	session_id: Optional[str] = None
	state: ControllerState = ControllerState.IDLE
	turns: List[Turn] = []
	progress: int = 0
	audio_level: int = 0
	auto_listen: bool = False
	ended: bool = False
	notice: Optional[str] = None
	last_error: Optional[str] = None
	scene: Optional[Dict[str, str]] = None
	playback: Optional[Dict[str, Any]] = None


class ConversationTurnController:
	def __init__(
		self,
		capture_device: CaptureDevice,
		transcriber: TranscriptionClient,
		generator: ResponseGenerator,
		synthesizer: SpeechSynthesisChain,
		sink: AudioSink,
		replay_sink: Optional[AudioSink] = None,
		*,
		language: str = "en",
		auto_listen_delay: float = 2.0,
		rng: Optional[random.Random] = None,
		events: Optional[ConversationEventBus] = None,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	) -> None:
		self.capture = AudioCaptureSession(capture_device)
		self.transcriber = transcriber
		self.generator = generator
		self.synthesizer = synthesizer
		self.sink = sink
		self.replay_sink = replay_sink or sink
		self.language = language
		self.auto_listen_delay = auto_listen_delay
		self.rng = rng or random.Random()
		self.events = events or ConversationEventBus()
		self._sleep = sleep

		self.session: Optional[ConversationSession] = None
		self.scene: Optional[SceneConfig] = None
		self.profile: Optional[str] = None
		self.state = ControllerState.IDLE
		self.notice: Optional[str] = None
		self.last_error: Optional[str] = None
		self._task: Optional[asyncio.Task] = None
		self._rearm_task: Optional[asyncio.Task] = None
		self._replay_task: Optional[asyncio.Task] = None

	# ------------------------------------------------------------------
	# Session lifecycle
	# ------------------------------------------------------------------

	async def start_session(self, character: Character, scenario: Scenario, audience: Audience = "general") -> ConversationSession:
		scenario.validate_choice()
		if self.session is not None:
			await self._teardown()
		self.session = ConversationSession(audience=audience, character=character, scenario=scenario)
		self._bind_scene()
		logger.info("Session %s started (%s)", self.session.session_id, scenario.preset_key or "free text")
		await self._open_scene()
		return self.session

	def restore_session(self, session: ConversationSession) -> None:
		"""Adopt a previously saved session. Nothing is replayed or re-synthesized."""
		if self._pipeline_running():
			raise SessionBusy()
		self.capture.release()
		self.session = session
		self._bind_scene()
		self.notice = None
		self.last_error = None
		self._set_state(ControllerState.IDLE)

	async def reset_session(self) -> ConversationSession:
		session = self._require_session()
		await self._cancel_tasks()
		self.capture.release()
		session.clear()
		self.notice = None
		self.last_error = None
		self._set_state(ControllerState.IDLE)
		self._emit(EventType.SESSION_RESET, generation=session.generation)
		await self._open_scene()
		return session

	async def close(self) -> None:
		await self._teardown()
		self.session = None
		self.scene = None
		self.profile = None

	def set_auto_listen(self, enabled: bool) -> None:
		session = self._require_session()
		session.auto_listen = bool(enabled)
		if not enabled and self._rearm_task is not None:
			self._rearm_task.cancel()
			self._rearm_task = None

	# ------------------------------------------------------------------
	# Turn pipeline
	# ------------------------------------------------------------------

	def start_listening(self) -> None:
		self._require_session()
		if self._pipeline_running():
			raise SessionBusy()
		try:
			self.capture.start()
		except PermissionDenied as e:
			self._fail(e)
			raise
		self.notice = None
		self.last_error = None
		self._set_state(ControllerState.LISTENING)

	def push_audio(self, chunk: bytes) -> bool:
		if self.state != ControllerState.LISTENING:
			return False
		self.capture.feed(chunk)
		return True

	def stop_listening(self) -> Optional[asyncio.Task]:
		"""Finalize the clip and run the rest of the turn in the background."""
		if self.state != ControllerState.LISTENING:
			return None
		session = self._require_session()
		try:
			clip = self.capture.stop()
		except Exception as e:
			logger.warning("Finalizing the recording failed: %s", e)
			self._fail(e)
			return None
		self._set_state(ControllerState.TRANSCRIBING)
		self._task = asyncio.create_task(self._run_turn(clip, session.generation))
		return self._task

	async def submit_recording(self, audio: bytes) -> Optional[asyncio.Task]:
		self.start_listening()
		if audio:
			self.capture.feed(audio)
		return self.stop_listening()

	async def wait_until_idle(self) -> None:
		while True:
			pending = [t for t in (self._task, self._rearm_task) if t is not None and not t.done()]
			if not pending:
				return
			await asyncio.gather(*pending, return_exceptions=True)

	async def _run_turn(self, clip: Optional[AudioClip], generation: int) -> None:
		try:
			await self._turn_steps(clip, generation)
		except asyncio.CancelledError:
			raise
		except ConversationError as e:
			if not self._stale(generation):
				self._fail(e)
		except Exception as e:
			logger.exception("Turn pipeline failed")
			if not self._stale(generation):
				self._fail(e)

	async def _turn_steps(self, clip: Optional[AudioClip], generation: int) -> None:
		session = self._require_session()
		try:
			transcript = await self.transcriber.transcribe(clip or AudioClip(b""), self.language)
		except NoSpeechDetected as e:
			if self._stale(generation):
				return
			self.notice = e.user_message
			self._emit(EventType.NOTICE, message=self.notice)
			self._set_state(ControllerState.IDLE)
			return
		except TranscriptionFailed as e:
			if not self._stale(generation):
				self._fail(e)
			return
		if self._stale(generation):
			return

		history = list(session.turns)
		self._append(Turn(speaker="user", text=transcript.text))
		self._set_state(ControllerState.GENERATING)
		reply = await self.generator.generate(transcript.text, history, session.character, self.scene)
		if self._stale(generation):
			return
		if reply.degraded:
			logger.info("Session %s continues with a substitute reply", session.session_id)

		handle = await self._synthesize(reply.text, reply.emotion, generation)
		if self._stale(generation):
			return
		self._append(self._character_turn(reply.text, handle, reply.emotion, reply.feedback))
		progress = session.advance_progress()
		self._emit(EventType.PROGRESS_CHANGED, progress=progress)
		if reply.should_end:
			session.ended = True
		await self._play(handle, generation)

	async def _open_scene(self) -> None:
		session = self._require_session()
		generation = session.generation
		scene = self.scene
		self._append(Turn(speaker="system", text=scene_description(scene, session.character)))
		line = opening_line(scene, session.character, self.rng)
		session.progress = max(session.progress, OPENING_PROGRESS)
		self._emit(EventType.PROGRESS_CHANGED, progress=session.progress)
		handle = await self._synthesize(line, "friendly", generation)
		if self._stale(generation):
			return
		self._append(self._character_turn(line, handle, "friendly", None))
		self._task = asyncio.create_task(self._play_opening(handle, generation))

	async def _play_opening(self, handle: Optional[SpeechHandle], generation: int) -> None:
		try:
			await self._play(handle, generation)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.exception("Opening playback failed")
			if not self._stale(generation):
				self._fail(e)

	async def _synthesize(self, text: str, emotion: Optional[str], generation: int) -> Optional[SpeechHandle]:
		self._set_state(ControllerState.SYNTHESIZING)
		try:
			handle = await self.synthesizer.synthesize(text, self.profile or "", emotion)
		except SynthesisUnavailable as e:
			if not self._stale(generation):
				self.notice = e.user_message
				self._emit(EventType.NOTICE, message=self.notice)
			return None
		if handle.provider == DEVICE_PROVIDER and not self._stale(generation):
			self.notice = "Using system voice."
			self._emit(EventType.NOTICE, message=self.notice)
		return handle

	async def _play(self, handle: Optional[SpeechHandle], generation: int) -> None:
		if handle is not None:
			self._set_state(ControllerState.PLAYING)
			await self.sink.play(handle)
			if self._stale(generation):
				return
		self._set_state(ControllerState.IDLE)
		session = self.session
		if session is not None and session.auto_listen and not session.ended:
			self._rearm_task = asyncio.create_task(self._rearm(generation))

	async def _rearm(self, generation: int) -> None:
		# Let the tail of the character's speech die out before listening again
		await self._sleep(self.auto_listen_delay)
		session = self.session
		if self._stale(generation) or session is None or not session.auto_listen:
			return
		if self.state != ControllerState.IDLE:
			return
		try:
			self.start_listening()
		except (PermissionDenied, SessionBusy) as e:
			logger.info("Auto-listen not re-armed: %s", e)

	# ------------------------------------------------------------------
	# Replay
	# ------------------------------------------------------------------

	def replay(self, turn_index: int) -> SpeechHandle:
		"""Play an earlier clip again on the replay channel.

		Never touches pipeline state; on-device and text-only turns cannot be replayed.
		"""
		session = self._require_session()
		if turn_index < 0 or turn_index >= len(session.turns):
			raise ReplayUnavailable("No such turn.")
		turn = session.turns[turn_index]
		if not turn.audio_url:
			raise ReplayUnavailable()
		handle = SpeechHandle(text=turn.text, provider=turn.audio_provider or "unknown", audio_url=turn.audio_url)
		if self._replay_task is not None and not self._replay_task.done():
			self._replay_task.cancel()
		self._replay_task = asyncio.create_task(self.replay_sink.play(handle))
		return handle

	# ------------------------------------------------------------------
	# Read-only view
	# ------------------------------------------------------------------

	def view(self) -> ConversationView:
		session = self.session
		if session is None:
			return ConversationView(state=self.state, notice=self.notice, last_error=self.last_error)
		scene = self.scene
		return ConversationView(
			session_id=session.session_id,
			state=self.state,
			turns=list(session.turns),
			progress=session.progress,
			audio_level=self.capture.level if self.state == ControllerState.LISTENING else 0,
			auto_listen=session.auto_listen,
			ended=session.ended,
			notice=self.notice,
			last_error=self.last_error,
			scene={
				"situation": scene.situation,
				"user_role": scene.user_role,
				"character_role": scene.character_role,
				"objective": scene.objective,
			} if scene else None,
			playback=getattr(self.sink, "current", None),
		)

	# ------------------------------------------------------------------
	# Helpers
	# ------------------------------------------------------------------

	def _bind_scene(self) -> None:
		session = self._require_session()
		self.scene = scene_for(session.scenario)
		self.profile = voice_profile(session.character.gender, session.character.style, self.scene.character_role)

	def _character_turn(self, text: str, handle: Optional[SpeechHandle], emotion: Optional[str], feedback: Optional[Feedback]) -> Turn:
		return Turn(
			speaker="character",
			text=text,
			audio_url=handle.audio_url if handle else None,
			audio_provider=handle.provider if handle else None,
			feedback=feedback,
			emotion=emotion,
		)

	def _append(self, turn: Turn) -> None:
		session = self._require_session()
		index = session.append(turn)
		self._emit(EventType.TURN_APPENDED, index=index, speaker=turn.speaker)

	def _require_session(self) -> ConversationSession:
		if self.session is None:
			raise SessionNotStarted()
		return self.session

	def _stale(self, generation: int) -> bool:
		return self.session is None or self.session.generation != generation

	def _pipeline_running(self) -> bool:
		if self.state != ControllerState.IDLE:
			return True
		task = self._task
		return task is not None and not task.done() and task is not asyncio.current_task()

	def _set_state(self, state: ControllerState) -> None:
		if state == self.state:
			return
		previous = self.state
		self.state = state
		self._emit(EventType.STATE_CHANGED, previous=previous.value, state=state.value)

	def _fail(self, error: Exception) -> None:
		message = error.user_message if isinstance(error, ConversationError) else "Something went wrong. Please try again."
		self.last_error = message
		self.capture.release()
		self._set_state(ControllerState.ERROR)
		self._emit(EventType.ERROR_OCCURRED, error_type=type(error).__name__, message=message)
		self._set_state(ControllerState.IDLE)

	def _emit(self, event_type: EventType, **data: Any) -> None:
		session_id = self.session.session_id if self.session else ""
		self.events.emit(ConversationEvent(event_type=event_type, session_id=session_id, data=data))

	async def _cancel_tasks(self) -> None:
		tasks = [t for t in (self._task, self._rearm_task, self._replay_task) if t is not None and not t.done()]
		current = asyncio.current_task()
		tasks = [t for t in tasks if t is not current]
		for t in tasks:
			t.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._task = None
		self._rearm_task = None
		self._replay_task = None

	async def _teardown(self) -> None:
		await self._cancel_tasks()
		self.capture.release()
		if self.session is not None:
			self.session.generation += 1
		self._set_state(ControllerState.IDLE)
