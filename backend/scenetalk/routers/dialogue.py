from __future__ import annotations
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..conversation.catalog import opening_line, scene_for
from ..conversation.errors import InvalidScenario
from ..conversation.models import Audience, Character, Scenario
from ..db import get_db
from ..gemini_client import GeminiClient
from ..services import get_llm_client
from .auth import User, enforce_request_limit, get_current_user

logger = logging.getLogger("scenetalk.routers.dialogue")

router = APIRouter(prefix="/dialogue", tags=["dialogue"])

AUDIENCE_LEVELS: Dict[str, Dict[str, str]] = {
	"student": {"cefr": "A2-B1", "vocabulary": "basic to intermediate vocabulary, simple sentence structures", "topics": "school life, daily activities, hobbies"},
	"general": {"cefr": "B1-B2", "vocabulary": "intermediate vocabulary, varied sentence structures", "topics": "travel, work, social situations, daily life"},
	"business": {"cefr": "B2-C1", "vocabulary": "advanced vocabulary, professional terminology, complex structures", "topics": "professional communication, meetings, negotiations, presentations"},
}

STYLE_NOTES: Dict[str, str] = {
	"cheerful": "enthusiastic, encouraging, uses positive language",
	"calm": "patient, gentle, uses reassuring language",
	"strict": "focused, direct, uses formal language and clear instructions",
}


class DialogueRequest(BaseModel):
	audience: Audience = "general"
	character: Character
	scenario: Scenario


class DialogueResponse(BaseModel):
	lines: List[str]
	focus_phrases: List[str]
	generated: bool = True


def _build_prompt(req: DialogueRequest) -> str:
	level = AUDIENCE_LEVELS[req.audience]
	scenario_text = req.scenario.free_text or req.scenario.preset_key or "general conversation"
	return (
		f"You are {req.character.name}, a {req.character.style} English tutor for {req.audience} learners.\n"
		f"LEVEL: {level['cefr']}. VOCABULARY: {level['vocabulary']}. TOPICS: {level['topics']}.\n"
		f"STYLE: {STYLE_NOTES[req.character.style]}.\n"
		f"SCENARIO: {scenario_text}\n\n"
		f"Generate exactly 3 lines {req.character.name} would say in this scenario, and 3 native-like focus phrases "
		"appropriate for this level.\n"
		'Return STRICT JSON only: {"lines": ["...", "...", "..."], "focus_phrases": ["...", "...", "..."]}'
	)


def _three(values: object) -> Optional[List[str]]:
	if not isinstance(values, list):
		return None
	cleaned = [str(v).strip() for v in values if str(v).strip()]
	return cleaned[:3] if len(cleaned) >= 3 else None


def _catalog_dialogue(req: DialogueRequest) -> DialogueResponse:
	scene = scene_for(req.scenario)
	lines = [line.format(name=req.character.name) for line in scene.openings[:3]]
	while len(lines) < 3:
		lines.append(opening_line(scene, req.character))
	phrases = list(scene.expressions[:3]) or ["Could you say that again, please?", "That sounds great!", "What do you recommend?"]
	while len(phrases) < 3:
		phrases.append("Could you tell me more about that?")
	return DialogueResponse(lines=lines, focus_phrases=phrases, generated=False)


@router.post("/generate", response_model=DialogueResponse)
async def generate(
	req: DialogueRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: Optional[GeminiClient] = Depends(get_llm_client),
):
	try:
		req.scenario.validate_choice()
	except InvalidScenario as e:
		raise HTTPException(status_code=400, detail=str(e))
	enforce_request_limit(db, user.username)
	if client is None:
		return _catalog_dialogue(req)
	try:
		data = await client.generate_json(_build_prompt(req), temperature=0.7)
	except Exception as e:
		logger.warning("Dialogue generation failed, using catalog lines: %s", e)
		return _catalog_dialogue(req)
	lines = _three(data.get("lines"))
	phrases = _three(data.get("focus_phrases"))
	if lines is None or phrases is None:
		logger.warning("Dialogue generation returned malformed output, using catalog lines")
		return _catalog_dialogue(req)
	return DialogueResponse(lines=lines, focus_phrases=phrases)
