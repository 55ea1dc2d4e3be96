from __future__ import annotations
import re
from typing import Dict, List, Mapping, Optional


def _slug(value: str) -> str:
	return re.sub(r"[^a-z0-9]+", "_", (value or "").strip().lower()).strip("_")


def voice_profile(gender: str, style: str, role: Optional[str] = None) -> str:
	"""Return the provider-neutral voice profile key for a character.

	The key has the form ``<gender>_<style>`` optionally followed by
	``@<role>``, e.g. ``female_cheerful@friendly_barista``. Pure function of its
	inputs so a character keeps the same voice for a whole session.
	"""
	key = f"{_slug(gender) or 'female'}_{_slug(style) or 'cheerful'}"
	role_slug = _slug(role or "")
	return f"{key}@{role_slug}" if role_slug else key


def profile_candidates(profile: str) -> List[str]:
	"""Lookup keys for a profile, most specific first."""
	base, _, role = (profile or "").partition("@")
	gender = base.split("_", 1)[0]
	keys: List[str] = []
	if role:
		keys.extend([profile, f"{gender}@{role}"])
	keys.append(base)
	keys.append(gender)
	return keys


def resolve_voice(profile: str, voices: Mapping[str, str], default: str) -> str:
	for key in profile_candidates(profile):
		if key in voices:
			return voices[key]
	return default


OPENAI_DEFAULT_VOICE = "nova"
OPENAI_VOICES: Dict[str, str] = {
	# Role-specific voices
	"female@professional_server": "nova",
	"male@professional_server": "onyx",
	"female@flight_attendant": "shimmer",
	"male@flight_attendant": "echo",
	"female@friendly_barista": "alloy",
	"male@friendly_barista": "fable",
	"female@senior_executive": "nova",
	"male@senior_executive": "onyx",
	"female@concierge": "shimmer",
	"male@concierge": "echo",
	"female@cafeteria_staff": "alloy",
	# Style fallbacks
	"female_strict": "nova",
	"female_cheerful": "shimmer",
	"female_calm": "alloy",
	"male_strict": "onyx",
	"male_cheerful": "echo",
	"male_calm": "fable",
	"female": "nova",
	"male": "onyx",
}

ELEVENLABS_DEFAULT_VOICE = "pNInz6obpgDQGcFmaJgB"
ELEVENLABS_VOICES: Dict[str, str] = {
	"female_cheerful": "ThT5KcBeYPX3keUQqHPh",
	"female_calm": "pNInz6obpgDQGcFmaJgB",
	"female_strict": "MF3mGyEYCl7XYWbV9V6O",
	"male_strict": "MF3mGyEYCl7XYWbV9V6O",
	"male": "2EiwWnXFnvU5JabPnv8n",
	"female@senior_executive": "MF3mGyEYCl7XYWbV9V6O",
	"male@senior_executive": "MF3mGyEYCl7XYWbV9V6O",
}

# Only one English voice is provisioned on Supertone
SUPERTONE_DEFAULT_VOICE = "91992bbd4758bdcf9c9b01"
SUPERTONE_VOICES: Dict[str, str] = {}


# Parameters for on-device speech: (pitch, rate) per profile
DEVICE_DEFAULT_PARAMS = (1.0, 0.9)
DEVICE_PARAMS: Dict[str, tuple] = {
	"female_cheerful": (1.2, 1.0),
	"female_calm": (1.0, 0.85),
	"female_strict": (1.0, 0.9),
	"male_cheerful": (0.9, 1.0),
	"male_calm": (0.8, 0.85),
	"male_strict": (0.8, 0.9),
}


def device_params(profile: str) -> Dict[str, object]:
	base = profile.partition("@")[0]
	pitch, rate = DEVICE_PARAMS.get(base, DEVICE_DEFAULT_PARAMS)
	gender = base.split("_", 1)[0]
	return {"pitch": pitch, "rate": rate, "voice_selector": f"en-US:{gender or 'female'}"}
