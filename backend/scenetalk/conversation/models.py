from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidScenario

Speaker = Literal["user", "character", "system"]
Audience = Literal["student", "general", "business"]
Emotion = Literal["neutral", "happy", "concerned", "professional", "excited", "calm", "friendly"]
PronunciationQuality = Literal["excellent", "good", "fair", "needs_work"]

OPENING_PROGRESS = 10
PROGRESS_STEP = 15
PROGRESS_CAP = 100

_PRONUNCIATION_LABELS = {"excellent", "good", "fair", "needs_work"}
_EMOTIONS = {"neutral", "happy", "concerned", "professional", "excited", "calm", "friendly"}


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def normalize_emotion(value: Any) -> Optional[str]:
	label = str(value or "").strip().lower()
	return label if label in _EMOTIONS else None


class Feedback(BaseModel):
	model_config = ConfigDict(frozen=True)

	accuracy: int = 0
	pronunciation_quality: Optional[PronunciationQuality] = None
	suggestions: List[str] = Field(default_factory=list)
	improved_expression: Optional[str] = None

	@field_validator("accuracy", mode="before")
	@classmethod
	def _clamp_accuracy(cls, value: Any) -> int:
		try:
			score = int(round(float(value)))
		except (TypeError, ValueError):
			score = 0
		return max(0, min(100, score))

	@field_validator("pronunciation_quality", mode="before")
	@classmethod
	def _normalize_quality(cls, value: Any) -> Optional[str]:
		label = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
		return label if label in _PRONUNCIATION_LABELS else None

	@field_validator("suggestions", mode="before")
	@classmethod
	def _clean_suggestions(cls, value: Any) -> List[str]:
		if value is None:
			return []
		if isinstance(value, str):
			value = [value]
		return [str(s).strip() for s in value if str(s).strip()]


class Turn(BaseModel):
	"""One utterance in a conversation. Never mutated once created."""

	model_config = ConfigDict(frozen=True)

	speaker: Speaker
	text: str
	audio_url: Optional[str] = None
	# Which synthesis provider produced the audio ("device" for on-device speech)
	audio_provider: Optional[str] = None
	feedback: Optional[Feedback] = None
	emotion: Optional[Emotion] = None
	created_at: datetime = Field(default_factory=_utcnow)

	@field_validator("text")
	@classmethod
	def _non_empty(cls, value: str) -> str:
		if not value or not value.strip():
			raise ValueError("turn text must not be empty")
		return value


class Character(BaseModel):
	name: str = Field(min_length=1)
	gender: Literal["male", "female"]
	style: Literal["cheerful", "calm", "strict"]
	portrait_url: Optional[str] = None

	@field_validator("name")
	@classmethod
	def _strip_name(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("character name must not be empty")
		return value


class Scenario(BaseModel):
	preset_key: Optional[str] = None
	free_text: Optional[str] = None

	def validate_choice(self) -> "Scenario":
		"""Raise InvalidScenario unless exactly one of preset_key / free_text is set."""
		has_preset = bool((self.preset_key or "").strip())
		has_text = bool((self.free_text or "").strip())
		if has_preset == has_text:
			raise InvalidScenario()
		return self


class ConversationSession(BaseModel):
	"""One practice run, owned by a single controller."""

	session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
	audience: Audience = "general"
	character: Character
	scenario: Scenario
	turns: List[Turn] = Field(default_factory=list)
	progress: int = 0
	auto_listen: bool = False
	ended: bool = False
	# Bumped on every reset; results tagged with an older value are dropped
	generation: int = 0

	@model_validator(mode="after")
	def _check_scenario(self) -> "ConversationSession":
		self.scenario.validate_choice()
		return self

	def append(self, turn: Turn) -> int:
		self.turns.append(turn)
		return len(self.turns) - 1

	def advance_progress(self, step: int = PROGRESS_STEP) -> int:
		self.progress = min(PROGRESS_CAP, max(self.progress, self.progress + step))
		return self.progress

	def clear(self) -> None:
		self.turns = []
		self.progress = 0
		self.ended = False
		self.generation += 1

	def snapshot(self) -> Dict[str, Any]:
		return self.model_dump(mode="json")

	@classmethod
	def restore(cls, data: Dict[str, Any]) -> "ConversationSession":
		return cls.model_validate(data)
