from scenetalk.conversation import voices
from scenetalk.conversation.synthesis import ElevenLabsProvider, OpenAITTSProvider, SupertoneProvider


def test_voice_profile_is_deterministic():
	first = voices.voice_profile("female", "cheerful", "Friendly Barista")
	for _ in range(5):
		assert voices.voice_profile("female", "cheerful", "Friendly Barista") == first
	assert first == "female_cheerful@friendly_barista"


def test_voice_profile_without_role():
	assert voices.voice_profile("male", "calm") == "male_calm"
	assert voices.voice_profile("Male", " Calm ", "") == "male_calm"


def test_role_voice_wins_over_style():
	provider = OpenAITTSProvider(None)
	assert provider.voice_for(voices.voice_profile("female", "cheerful", "Friendly Barista")) == "alloy"
	assert provider.voice_for(voices.voice_profile("male", "cheerful", "Friendly Barista")) == "fable"


def test_style_voice_used_when_role_unknown():
	provider = OpenAITTSProvider(None)
	assert provider.voice_for(voices.voice_profile("male", "strict", "Lighthouse Keeper")) == "onyx"
	assert provider.voice_for(voices.voice_profile("female", "calm")) == "alloy"


def test_unknown_profile_maps_to_provider_default():
	assert OpenAITTSProvider(None).voice_for("robot_monotone") == voices.OPENAI_DEFAULT_VOICE
	assert ElevenLabsProvider(None).voice_for("") == voices.ELEVENLABS_DEFAULT_VOICE
	assert SupertoneProvider(None).voice_for("female_cheerful@concierge") == voices.SUPERTONE_DEFAULT_VOICE


def test_each_provider_translates_independently():
	profile = voices.voice_profile("female", "cheerful")
	assert OpenAITTSProvider(None).voice_for(profile) == "shimmer"
	assert ElevenLabsProvider(None).voice_for(profile) == "ThT5KcBeYPX3keUQqHPh"


def test_device_params_follow_profile():
	params = voices.device_params("male_calm@concierge")
	assert params["voice_selector"] == "en-US:male"
	assert params["rate"] < 1.0
	assert voices.device_params("unknown") == {"pitch": 1.0, "rate": 0.9, "voice_selector": "en-US:unknown"}
