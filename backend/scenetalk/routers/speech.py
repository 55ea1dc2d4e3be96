from __future__ import annotations
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..conversation.capture import AudioClip, decode_audio_payload
from ..conversation.catalog import scene_for
from ..conversation.errors import NoSpeechDetected, SynthesisUnavailable, TranscriptionFailed
from ..conversation.generation import ResponseGenerator
from ..conversation.models import Character, Feedback, Scenario, Turn
from ..conversation.transcription import TranscriptionClient
from ..conversation.voices import voice_profile
from ..db import get_db
from ..services import (
	SynthesisChainFactory,
	get_response_generator,
	get_synthesis_chain_factory,
	get_transcription_client,
)
from .auth import User, enforce_request_limit, get_current_user

logger = logging.getLogger("scenetalk.routers.speech")

router = APIRouter(prefix="/speech", tags=["speech"])


class TTSRequest(BaseModel):
	text: str = Field(min_length=1)
	gender: Literal["male", "female"] = "female"
	style: Literal["cheerful", "calm", "strict"] = "cheerful"
	role: Optional[str] = None
	emotion: Optional[str] = None
	device_speech_supported: Optional[bool] = None


class RecognizeRequest(BaseModel):
	audio_base64: str
	mime_type: str = "audio/webm"
	language: str = "en"


class RecognizeResponse(BaseModel):
	text: str
	empty: bool


class HistoryItem(BaseModel):
	speaker: Literal["user", "character", "system"]
	text: str


class RespondRequest(BaseModel):
	user_text: str = Field(min_length=1)
	history: List[HistoryItem] = []
	character: Character
	topic: str = "English conversation"


class RespondResponse(BaseModel):
	response: str
	feedback: Optional[Feedback] = None
	emotion: Optional[str] = None
	should_end: bool = False
	degraded: bool = False


@router.post("/tts")
async def tts(
	req: TTSRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	chain_factory: SynthesisChainFactory = Depends(get_synthesis_chain_factory),
):
	enforce_request_limit(db, user.username)
	chain = chain_factory(req.device_speech_supported)
	profile = voice_profile(req.gender, req.style, req.role)
	try:
		handle = await chain.synthesize(req.text, profile, req.emotion)
	except SynthesisUnavailable as e:
		raise HTTPException(status_code=503, detail=str(e))
	return handle.as_dict()


@router.post("/recognize", response_model=RecognizeResponse)
async def recognize(
	req: RecognizeRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: TranscriptionClient = Depends(get_transcription_client),
):
	try:
		audio = decode_audio_payload(req.audio_base64)
	except ValueError:
		raise HTTPException(status_code=400, detail="audio_base64 is not valid base64")
	enforce_request_limit(db, user.username)
	try:
		transcript = await client.transcribe(AudioClip(audio, req.mime_type), req.language)
	except NoSpeechDetected:
		return RecognizeResponse(text="", empty=True)
	except TranscriptionFailed as e:
		raise HTTPException(status_code=502, detail=str(e))
	return RecognizeResponse(text=transcript.text, empty=False)


@router.post("/respond", response_model=RespondResponse)
async def respond(
	req: RespondRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	generator: ResponseGenerator = Depends(get_response_generator),
):
	enforce_request_limit(db, user.username)
	history = [Turn(speaker=h.speaker, text=h.text) for h in req.history if h.text.strip()]
	scene = scene_for(Scenario(free_text=req.topic or "English conversation"))
	reply = await generator.generate(req.user_text, history, req.character, scene)
	return RespondResponse(
		response=reply.text,
		feedback=reply.feedback,
		emotion=reply.emotion,
		should_end=reply.should_end,
		degraded=reply.degraded,
	)
