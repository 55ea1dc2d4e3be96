"""
Conversation Router
===================

REST surface over ConversationTurnController. The browser records audio and
plays synthesized clips; these endpoints move audio in and playback reports
back, while the controller owns the turn state.

Controllers live in memory, one per practice run, keyed by session id and
owned by the user who started them. Saved snapshots go to the relational store.
"""

from __future__ import annotations
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..conversation.capture import UploadedAudioDevice, decode_audio_payload
from ..conversation.controller import ConversationTurnController, ConversationView
from ..conversation.errors import (
	ConversationError,
	InvalidScenario,
	PermissionDenied,
	ReplayUnavailable,
	SessionBusy,
	SessionNotStarted,
)
from ..conversation.models import Audience, Character, ConversationSession, Scenario
from ..db import get_db
from ..models import LearningSession
from ..services import ControllerFactory, get_controller_factory
from ..settings import settings
from .auth import User, get_current_user

logger = logging.getLogger("scenetalk.routers.conversation")

router = APIRouter(prefix="/conversation", tags=["conversation"])


@dataclass
class _Entry:
	username: str
	controller: ConversationTurnController
	last_active: float = field(default_factory=time.monotonic)


_controllers: Dict[str, _Entry] = {}


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StartRequest(BaseModel):
	audience: Audience = "general"
	character: Character
	scenario: Scenario
	auto_listen: bool = False
	# None means "use the server default"
	device_speech_supported: Optional[bool] = None


class StartResponse(BaseModel):
	session_id: str
	view: ConversationView


class ListenStartRequest(BaseModel):
	microphone_available: bool = True


class AudioChunkRequest(BaseModel):
	audio_base64: str


class RecordingRequest(BaseModel):
	audio_base64: str
	mime_type: Optional[str] = None


class PlaybackEndedRequest(BaseModel):
	channel: Literal["turn", "replay"] = "turn"
	sequence: Optional[int] = None


class AutoListenRequest(BaseModel):
	enabled: bool


class RestoreRequest(BaseModel):
	device_speech_supported: Optional[bool] = None


# ============================================================================
# HELPERS
# ============================================================================

def _http_error(error: ConversationError) -> HTTPException:
	if isinstance(error, (SessionBusy, ReplayUnavailable)):
		return HTTPException(status_code=409, detail=str(error))
	if isinstance(error, InvalidScenario):
		return HTTPException(status_code=400, detail=str(error))
	if isinstance(error, SessionNotStarted):
		return HTTPException(status_code=404, detail=str(error))
	if isinstance(error, PermissionDenied):
		return HTTPException(status_code=403, detail=str(error))
	return HTTPException(status_code=500, detail=str(error))


def _decode_audio(data: str) -> bytes:
	try:
		return decode_audio_payload(data)
	except ValueError:
		raise HTTPException(status_code=400, detail="audio_base64 is not valid base64")


def _entry_for(session_id: str, user: User) -> _Entry:
	entry = _controllers.get(session_id)
	if entry is None or entry.username != user.username:
		raise HTTPException(status_code=404, detail="Conversation session not found")
	entry.last_active = time.monotonic()
	return entry


async def evict_idle_controllers(max_idle_seconds: float, now: Optional[float] = None) -> int:
	"""Close and forget controllers nobody has touched for ``max_idle_seconds``."""
	now = time.monotonic() if now is None else now
	stale = [sid for sid, entry in _controllers.items() if now - entry.last_active > max_idle_seconds]
	for sid in stale:
		entry = _controllers.pop(sid, None)
		if entry is None:
			continue
		try:
			await entry.controller.close()
		except Exception as e:
			logger.warning("Closing idle conversation %s failed: %s", sid, e)
	if stale:
		logger.info("Evicted %d idle conversations", len(stale))
	return len(stale)


def _uploaded_device(controller: ConversationTurnController) -> Optional[UploadedAudioDevice]:
	device = controller.capture.device
	return device if isinstance(device, UploadedAudioDevice) else None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/start", response_model=StartResponse)
async def start(
	req: StartRequest,
	user: User = Depends(get_current_user),
	factory: ControllerFactory = Depends(get_controller_factory),
):
	await evict_idle_controllers(settings.conversation_idle_minutes * 60)
	try:
		req.scenario.validate_choice()
		controller = factory(req.device_speech_supported)
		session = await controller.start_session(req.character, req.scenario, req.audience)
		if req.auto_listen:
			controller.set_auto_listen(True)
	except ConversationError as e:
		raise _http_error(e)
	_controllers[session.session_id] = _Entry(username=user.username, controller=controller)
	logger.info("User %s started conversation %s", user.username, session.session_id)
	return StartResponse(session_id=session.session_id, view=controller.view())


@router.post("/restore/{session_id}", response_model=StartResponse)
async def restore(
	session_id: str,
	req: Optional[RestoreRequest] = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	factory: ControllerFactory = Depends(get_controller_factory),
):
	row = db.get(LearningSession, session_id)
	if row is None or row.username != user.username:
		raise HTTPException(status_code=404, detail="Saved session not found")
	try:
		session = ConversationSession.restore(json.loads(row.snapshot_json))
	except (ValueError, TypeError) as e:
		logger.warning("Saved session %s is unreadable: %s", session_id, e)
		raise HTTPException(status_code=422, detail="Saved session is corrupted")
	previous = _controllers.pop(session_id, None)
	if previous is not None:
		await previous.controller.close()
	controller = factory(req.device_speech_supported if req else None)
	controller.restore_session(session)
	_controllers[session.session_id] = _Entry(username=user.username, controller=controller)
	return StartResponse(session_id=session.session_id, view=controller.view())


@router.get("/{session_id}", response_model=ConversationView)
async def get_view(session_id: str, user: User = Depends(get_current_user)):
	return _entry_for(session_id, user).controller.view()


@router.post("/{session_id}/listen/start", response_model=ConversationView)
async def listen_start(session_id: str, req: Optional[ListenStartRequest] = None, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	device = _uploaded_device(controller)
	if device is not None:
		device.microphone_available = req.microphone_available if req else True
	try:
		controller.start_listening()
	except ConversationError as e:
		raise _http_error(e)
	return controller.view()


@router.post("/{session_id}/listen/audio")
async def listen_audio(session_id: str, req: AudioChunkRequest, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	if not controller.push_audio(_decode_audio(req.audio_base64)):
		raise HTTPException(status_code=409, detail="Not listening")
	return {"ok": True, "audio_level": controller.view().audio_level}


@router.post("/{session_id}/listen/stop", response_model=ConversationView)
async def listen_stop(session_id: str, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	controller.stop_listening()
	return controller.view()


@router.post("/{session_id}/recording", response_model=ConversationView)
async def recording(session_id: str, req: RecordingRequest, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	audio = _decode_audio(req.audio_base64)
	device = _uploaded_device(controller)
	if device is not None:
		device.microphone_available = True
		if req.mime_type:
			device.mime_type = req.mime_type
	try:
		await controller.submit_recording(audio)
	except ConversationError as e:
		raise _http_error(e)
	return controller.view()


@router.post("/{session_id}/playback/ended")
async def playback_ended(session_id: str, req: Optional[PlaybackEndedRequest] = None, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	channel = req.channel if req else "turn"
	sink = controller.replay_sink if channel == "replay" else controller.sink
	notify = getattr(sink, "notify_ended", None)
	acknowledged = bool(notify(req.sequence if req else None)) if notify else False
	return {"ok": True, "acknowledged": acknowledged}


@router.post("/{session_id}/replay/{turn_index}")
async def replay(session_id: str, turn_index: int, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	try:
		handle = controller.replay(turn_index)
	except ConversationError as e:
		raise _http_error(e)
	return handle.as_dict()


@router.post("/{session_id}/reset", response_model=ConversationView)
async def reset(session_id: str, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	try:
		await controller.reset_session()
	except ConversationError as e:
		raise _http_error(e)
	return controller.view()


@router.post("/{session_id}/auto-listen", response_model=ConversationView)
async def auto_listen(session_id: str, req: AutoListenRequest, user: User = Depends(get_current_user)):
	controller = _entry_for(session_id, user).controller
	controller.set_auto_listen(req.enabled)
	return controller.view()


@router.post("/{session_id}/save")
async def save(session_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	session = _entry_for(session_id, user).controller.session
	if session is None:
		raise HTTPException(status_code=404, detail="Conversation session not found")
	row = db.get(LearningSession, session_id) or LearningSession(session_id=session_id, username=user.username)
	row.audience = session.audience
	row.character_json = session.character.model_dump_json()
	row.scenario_json = session.scenario.model_dump_json()
	row.snapshot_json = json.dumps(session.snapshot())
	row.progress = session.progress
	db.add(row)
	db.commit()
	return {"ok": True, "session_id": session_id, "turns": len(session.turns)}


@router.delete("/{session_id}")
async def close(session_id: str, user: User = Depends(get_current_user)):
	entry = _entry_for(session_id, user)
	_controllers.pop(session_id, None)
	await entry.controller.close()
	return {"ok": True}
