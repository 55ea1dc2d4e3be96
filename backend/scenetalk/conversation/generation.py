"""
Reply generation for the conversation loop.

The character's next line comes from the LLM, asked for a JSON object with the
reply plus feedback on the learner's last utterance. This component never
raises: when the model is unreachable, slow or returns something unusable, a
fixed continuation is used and the feedback is estimated locally so the
learner still gets a score.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .catalog import SceneConfig
from .errors import GenerationDegraded
from .models import Character, Feedback, Turn, normalize_emotion

logger = logging.getLogger("scenetalk.generation")

FALLBACK_REPLY = "I see! Please tell me more about that."
HISTORY_WINDOW = 6
# Ending is only considered once the conversation has some substance
MIN_TURNS_BEFORE_ENDING = 10


class LLMClient(Protocol):
	async def generate_json(self, prompt: str, *, system: Optional[str] = None, temperature: float = 0.7) -> Dict[str, Any]:
		...


@dataclass(frozen=True)
class Reply:
	text: str
	feedback: Optional[Feedback] = None
	emotion: Optional[str] = None
	should_end: bool = False
	degraded: bool = False


def bounded_history(history: Sequence[Turn], window: int = HISTORY_WINDOW) -> List[Turn]:
	"""Most recent user/character turns, oldest first. System turns are dropped."""
	spoken = [t for t in history if t.speaker != "system"]
	return spoken[-window:] if window > 0 else []


def heuristic_feedback(user_text: str) -> Feedback:
	"""Rough accuracy estimate from length and grammar markers."""
	text = (user_text or "").strip()
	words = re.findall(r"[A-Za-z']+", text)
	num_words = len(words)
	if not num_words:
		return Feedback(accuracy=0, suggestions=["Try answering in a full sentence."])
	linkers = len(re.findall(r"\b(because|however|so|but|although|for example|and then|also)\b", text, re.IGNORECASE))
	modals = len(re.findall(r"\b(would|could|should|might|must|may|can|will)\b", text, re.IGNORECASE))
	polite = len(re.findall(r"\b(please|thank you|thanks|excuse me|sorry)\b", text, re.IGNORECASE))
	score = 50
	if num_words >= 12:
		score += 20
	elif num_words >= 6:
		score += 12
	elif num_words >= 3:
		score += 5
	score += min(10, linkers * 5)
	score += min(10, modals * 5)
	score += min(5, polite * 5)
	suggestions: List[str] = []
	if num_words < 6:
		suggestions.append("Try to say a little more and add a detail or a reason.")
	if linkers < 1:
		suggestions.append("Connect ideas with words like 'because' or 'so'.")
	if modals < 1:
		suggestions.append("Polite requests with 'could' or 'would' sound more natural.")
	return Feedback(accuracy=score, suggestions=suggestions[:2])


def _build_prompt(user_text: str, history: Sequence[Turn], character: Character, scene: SceneConfig, allow_ending: bool) -> str:
	history_text = "\n".join(f"{t.speaker}: {t.text}" for t in history) or "(no earlier turns)"
	schema = {
		"response": "string, your next line in character",
		"emotion": "one of neutral|happy|concerned|professional|excited|calm|friendly",
		"feedback": {
			"accuracy": "integer 0-100",
			"pronunciation_quality": "one of excellent|good|fair|needs_work",
			"suggestions": ["short tip"],
			"improved_expression": "a more natural way to say the learner's line, or null",
		},
		"should_end": "boolean",
	}
	ending_rule = (
		"If the scenario has reached a natural conclusion you may set should_end to true and close politely."
		if allow_ending
		else "Keep the conversation going; should_end must be false."
	)
	return (
		f"You are {character.name}, playing the role of {scene.character_role} in this scenario: \"{scene.situation}\".\n"
		f"Your teaching style is {character.style}. Objective: {scene.objective}.\n\n"
		f"Recent conversation:\n{history_text}\n\n"
		f"The learner ({scene.user_role}) just said: \"{user_text}\"\n\n"
		"Respond naturally as your character in one to three short sentences, advancing the conversation. "
		f"Also evaluate the learner's English. {ending_rule}\n"
		f"Return STRICT JSON only with this shape: {json.dumps(schema)}"
	)


def _parse_reply(data: Dict[str, Any], allow_ending: bool) -> Optional[Reply]:
	text = str(data.get("response") or data.get("reply") or "").strip()
	if not text:
		return None
	raw_feedback = data.get("feedback")
	feedback: Optional[Feedback] = None
	if isinstance(raw_feedback, dict):
		feedback = Feedback(
			accuracy=raw_feedback.get("accuracy", 0),
			pronunciation_quality=raw_feedback.get("pronunciation_quality") or raw_feedback.get("pronunciation"),
			suggestions=raw_feedback.get("suggestions") or [],
			improved_expression=(raw_feedback.get("improved_expression") or raw_feedback.get("betterExpression") or None),
		)
	return Reply(
		text=text,
		feedback=feedback,
		emotion=normalize_emotion(data.get("emotion")),
		should_end=allow_ending and bool(data.get("should_end")),
	)


class ResponseGenerator:
	def __init__(self, llm: Optional[LLMClient], *, timeout: float = 30.0, history_window: int = HISTORY_WINDOW) -> None:
		self.llm = llm
		self.timeout = timeout
		self.history_window = history_window

	def degraded_reply(self, user_text: str) -> Reply:
		return Reply(text=FALLBACK_REPLY, feedback=heuristic_feedback(user_text), emotion="friendly", degraded=True)

	async def generate(self, user_text: str, history: Sequence[Turn], character: Character, scene: SceneConfig) -> Reply:
		recent = bounded_history(history, self.history_window)
		allow_ending = len([t for t in history if t.speaker != "system"]) >= MIN_TURNS_BEFORE_ENDING
		if self.llm is None:
			logger.warning("%s", GenerationDegraded("no language model configured"))
			return self.degraded_reply(user_text)
		prompt = _build_prompt(user_text, recent, character, scene, allow_ending)
		try:
			data = await asyncio.wait_for(self.llm.generate_json(prompt, temperature=0.7), timeout=self.timeout)
			reply = _parse_reply(data, allow_ending) if isinstance(data, dict) else None
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.warning("%s", GenerationDegraded(f"reply generation failed: {e!r}"))
			return self.degraded_reply(user_text)
		if reply is None:
			logger.warning("%s", GenerationDegraded("model returned no usable reply"))
			return self.degraded_reply(user_text)
		if reply.feedback is None:
			reply = Reply(
				text=reply.text,
				feedback=heuristic_feedback(user_text),
				emotion=reply.emotion,
				should_end=reply.should_end,
			)
		return reply
