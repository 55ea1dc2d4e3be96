from __future__ import annotations
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import Character, Scenario


@dataclass(frozen=True)
class PresetScenario:
	key: str
	title: str
	description: str


@dataclass(frozen=True)
class SceneConfig:
	situation: str
	user_role: str
	character_role: str
	objective: str
	expressions: List[str] = field(default_factory=list)
	# Opening lines; "{name}" is replaced by the character's name
	openings: List[str] = field(default_factory=list)


SCENARIO_PRESETS: Dict[str, List[PresetScenario]] = {
	"student": [
		PresetScenario("cafeteria", "School Cafeteria", "Ordering lunch and chatting with friends"),
		PresetScenario("club", "Club Activity", "Joining and participating in school clubs"),
		PresetScenario("homework", "Homework Help", "Getting help with assignments"),
		PresetScenario("school_trip", "School Trip", "Planning and discussing field trips"),
		PresetScenario("new_friend", "Making New Friends", "Introducing yourself to new classmates"),
		PresetScenario("confidence_talk", "Confidence Building", "Overcoming shyness and speaking up"),
	],
	"general": [
		PresetScenario("travel", "Travel Conversations", "Booking hotels and asking for directions"),
		PresetScenario("cafe_order", "Café Orders", "Ordering coffee and casual conversations"),
		PresetScenario("job_interview", "Job Interview (Basic)", "Entry-level interview preparation"),
		PresetScenario("roommate_chat", "Roommate Chat", "Daily conversations with roommates"),
		PresetScenario("hobby_club", "Hobby Club", "Discussing interests and joining activities"),
		PresetScenario("presentation_basics", "Presentation Basics", "Simple presentations and Q&A"),
	],
	"business": [
		PresetScenario("email_etiquette", "Email Etiquette", "Professional email communication"),
		PresetScenario("meeting_opener", "Meeting Openers", "Starting meetings and introductions"),
		PresetScenario("negotiation_basics", "Negotiation Basics", "Basic negotiation techniques"),
		PresetScenario("small_talk", "Professional Small Talk", "Networking and casual conversations"),
		PresetScenario("deadline_followup", "Deadline Follow-up", "Managing deadlines and project updates"),
		PresetScenario("presentation_qa", "Presentation Q&A", "Handling questions after presentations"),
	],
}


SCENES: Dict[str, SceneConfig] = {
	"restaurant": SceneConfig(
		situation="You're dining at an upscale restaurant",
		user_role="Customer",
		character_role="Professional Server",
		objective="Have a natural dining experience with proper etiquette",
		expressions=["Good evening, welcome to our restaurant", "May I recommend our chef's special?", "How would you like that cooked?", "Would you care for dessert?"],
		openings=[
			"Good evening! Welcome to our restaurant. I'm {name}, and I'll be taking care of you tonight. Have you dined with us before?",
			"Hello! Thank you for choosing our restaurant this evening. I'm {name}. May I start you with our sommelier's wine recommendation?",
			"Welcome! I'm {name}, and I'm delighted you're here. Our chef has prepared some exceptional specials tonight - would you like to hear about them?",
		],
	),
	"airport": SceneConfig(
		situation="You're checking in for an international business class flight",
		user_role="Business Traveler",
		character_role="Flight Attendant",
		objective="Complete check-in and receive premium service guidance",
		expressions=["Welcome aboard, may I see your boarding pass?", "Would you like champagne or orange juice?", "Our meal service begins shortly"],
		openings=[
			"Good afternoon! Welcome aboard our business class service. I'm {name}, your flight attendant. May I offer you a welcome drink?",
			"Hello! Thank you for flying with us today. I'm {name}. How was your airport experience?",
			"Welcome aboard! I'm {name}, and I'm here to ensure you have a comfortable flight. Would you like me to hang up your jacket?",
		],
	),
	"coffee_shop": SceneConfig(
		situation="You're at a trendy local coffee shop meeting a friend",
		user_role="Customer",
		character_role="Friendly Barista",
		objective="Order specialty coffee and engage in casual conversation",
		expressions=["Hey there! What can I craft for you today?", "That's our signature blend", "Would you like to try our new seasonal latte?"],
		openings=[
			"Hey there! Welcome to our little coffee haven. I'm {name} - what can I create for you today?",
			"Good morning! I'm {name}. Love the weather today, isn't it perfect for our outdoor seating? What sounds good to you?",
			"Hi! I'm {name}. First time here? You've got to try our signature cold brew - it's locally roasted and absolutely amazing!",
		],
	),
	"business_meeting": SceneConfig(
		situation="You're in a corporate meeting discussing a new project",
		user_role="Project Manager",
		character_role="Senior Executive",
		objective="Present ideas professionally and negotiate terms",
		expressions=["Thank you for joining today's meeting", "What's your take on the market analysis?", "When can we expect the deliverables?"],
		openings=[
			"Good morning everyone. I'm {name}. Thank you for making time for today's meeting. I'm excited to discuss our new initiative with you.",
			"Hello team. I'm {name}, and I appreciate you all being here. Shall we begin with a quick overview of where we stand?",
			"Welcome! I'm {name}. Before we dive into the agenda, how did the preliminary research go on your end?",
		],
	),
	"hotel": SceneConfig(
		situation="You're checking into a luxury hotel",
		user_role="Hotel Guest",
		character_role="Concierge",
		objective="Get personalized recommendations and luxury service",
		expressions=["Welcome to our hotel, how was your journey?", "I'd be happy to arrange restaurant reservations", "Our spa services are highly recommended"],
		openings=[
			"Welcome to the Grand Plaza! I'm {name}, your personal concierge. How was your journey here?",
			"Good afternoon! I'm {name}, and we're so pleased to have you staying with us. Is this your first visit to our city?",
			"Hello! I'm {name}. Welcome to our hotel. May I arrange anything special for your stay?",
		],
	),
	"cafeteria": SceneConfig(
		situation="You're in the school cafeteria ordering lunch",
		user_role="Student",
		character_role="Cafeteria Staff",
		objective="Order lunch and practice casual conversation",
		expressions=["What would you like for lunch today?", "Would you like fries with that?", "Here's your meal, enjoy!"],
		openings=[
			"Hi there! I'm {name}, and welcome to our cafeteria! What would you like for lunch today?",
			"Good afternoon! I'm {name}. Our daily special looks amazing today - would you like to hear about it?",
			"Hey! I'm {name}. First time in our cafeteria? Let me help you find something delicious!",
		],
	),
	"club": SceneConfig(
		situation="You're joining a school club activity",
		user_role="New Member",
		character_role="Club Leader",
		objective="Introduce yourself and learn about club activities",
		expressions=["Welcome to our club!", "What are you interested in?", "We meet every Tuesday"],
		openings=[
			"Welcome to our club! I'm {name}, the club leader. We're so excited to have you join us!",
			"Hi there! I'm {name}. Thanks for coming to our club meeting - what brings you here today?",
			"Hello! I'm {name}, and welcome to our weekly gathering. What are you most interested in learning about?",
		],
	),
}

# Preset keys from the audience catalog that share a scene
SCENE_ALIASES: Dict[str, str] = {
	"cafe_order": "coffee_shop",
	"travel": "hotel",
	"meeting_opener": "business_meeting",
	"negotiation_basics": "business_meeting",
	"deadline_followup": "business_meeting",
}

_GENERIC_OPENINGS = [
	"Hi! I'm {name}. I'm glad we can practice together today. Shall we get started?",
	"Hello there! I'm {name}. Let's jump right into our conversation - how are you today?",
]


def presets_for(audience: str) -> List[PresetScenario]:
	return list(SCENARIO_PRESETS.get(audience, []))


def find_preset(key: str) -> Optional[PresetScenario]:
	for presets in SCENARIO_PRESETS.values():
		for preset in presets:
			if preset.key == key:
				return preset
	return None


def scene_for(scenario: Scenario) -> SceneConfig:
	"""Resolve the scene a scenario plays out in.

	Presets with a dedicated scene use it; other presets and free-text scenarios
	get a generic English-practice scene built around their description.
	"""
	key = (scenario.preset_key or "").strip()
	if key:
		scene = SCENES.get(SCENE_ALIASES.get(key, key))
		if scene is not None:
			return scene
		preset = find_preset(key)
		situation = preset.description if preset else key.replace("_", " ").capitalize()
	else:
		situation = (scenario.free_text or "").strip() or "English practice"
	return SceneConfig(
		situation=situation,
		user_role="English learner",
		character_role="English conversation partner",
		objective="Keep the conversation going in natural English",
		openings=list(_GENERIC_OPENINGS),
	)


def opening_line(scene: SceneConfig, character: Character, rng: Optional[random.Random] = None) -> str:
	lines = scene.openings or _GENERIC_OPENINGS
	chooser = rng or random
	return chooser.choice(lines).format(name=character.name)


def scene_description(scene: SceneConfig, character: Character) -> str:
	return (
		f"Scene: {scene.situation}\n"
		f"Your role: {scene.user_role}\n"
		f"{character.name}'s role: {scene.character_role}"
	)
