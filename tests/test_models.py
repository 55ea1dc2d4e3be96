import pytest
from pydantic import ValidationError

from scenetalk.conversation.errors import InvalidScenario, SynthesisProviderFailure, TranscriptionFailed
from scenetalk.conversation.models import (
	Character,
	ConversationSession,
	Feedback,
	PROGRESS_CAP,
	Scenario,
	Turn,
)


def _character():
	return Character(name="Mina", gender="female", style="cheerful")


def test_feedback_accuracy_is_clamped_to_int_range():
	assert Feedback(accuracy=140).accuracy == 100
	assert Feedback(accuracy=-3).accuracy == 0
	assert Feedback(accuracy="87.6").accuracy == 88
	assert Feedback(accuracy="n/a").accuracy == 0


def test_feedback_normalizes_labels_and_suggestions():
	fb = Feedback(accuracy=70, pronunciation_quality="Needs Work", suggestions="Slow down")
	assert fb.pronunciation_quality == "needs_work"
	assert fb.suggestions == ["Slow down"]
	assert Feedback(pronunciation_quality="superb").pronunciation_quality is None
	assert Feedback().suggestions == []


def test_turn_is_immutable_and_non_empty():
	turn = Turn(speaker="user", text="Hello")
	with pytest.raises(ValidationError):
		turn.text = "changed"
	with pytest.raises(ValidationError):
		Turn(speaker="character", text="   ")


def test_character_name_required():
	with pytest.raises(ValidationError):
		Character(name="  ", gender="female", style="calm")


@pytest.mark.parametrize("scenario", [
	Scenario(),
	Scenario(preset_key="coffee_shop", free_text="At the park"),
	Scenario(preset_key="  ", free_text=""),
])
def test_scenario_requires_exactly_one_choice(scenario):
	with pytest.raises(InvalidScenario):
		scenario.validate_choice()


def test_session_rejects_invalid_scenario():
	with pytest.raises(InvalidScenario):
		ConversationSession(character=_character(), scenario=Scenario())


def test_progress_is_monotonic_and_capped():
	session = ConversationSession(character=_character(), scenario=Scenario(preset_key="coffee_shop"))
	seen = [session.progress]
	for _ in range(20):
		seen.append(session.advance_progress())
	assert seen == sorted(seen)
	assert max(seen) == PROGRESS_CAP
	assert session.advance_progress(-50) == PROGRESS_CAP


def test_clear_bumps_generation():
	session = ConversationSession(character=_character(), scenario=Scenario(free_text="Buying train tickets"))
	session.append(Turn(speaker="user", text="Hi"))
	session.advance_progress()
	session.clear()
	assert session.turns == []
	assert session.progress == 0
	assert session.generation == 1


def test_snapshot_restore_keeps_turns_in_order():
	session = ConversationSession(audience="business", character=_character(), scenario=Scenario(preset_key="small_talk"))
	session.append(Turn(speaker="system", text="Scene"))
	session.append(Turn(speaker="character", text="Hi!", audio_url="mock://1", audio_provider="openai"))
	session.append(Turn(speaker="user", text="Hello", feedback=None))
	session.append(Turn(speaker="character", text="Great", feedback=Feedback(accuracy=90, suggestions=["a", "b"])))
	session.auto_listen = True

	restored = ConversationSession.restore(session.snapshot())
	assert restored.session_id == session.session_id
	assert [t.text for t in restored.turns] == ["Scene", "Hi!", "Hello", "Great"]
	assert restored.turns[1].audio_provider == "openai"
	assert restored.turns[3].feedback.suggestions == ["a", "b"]
	assert restored.auto_listen is True
	assert restored.audience == "business"


def test_custom_error_message_is_shown_to_learner():
	assert TranscriptionFailed("Speech recognition timed out.").user_message == "Speech recognition timed out."
	assert TranscriptionFailed().user_message == TranscriptionFailed.user_message
	failure = SynthesisProviderFailure("openai", "HTTP 500")
	assert str(failure) == "openai: HTTP 500"
	assert failure.user_message == SynthesisProviderFailure.user_message
