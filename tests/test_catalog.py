import random

from scenetalk.conversation import catalog
from scenetalk.conversation.models import Character, Scenario


def _mina():
	return Character(name="Mina", gender="female", style="cheerful")


def test_every_audience_has_presets():
	for audience in ("student", "general", "business"):
		presets = catalog.presets_for(audience)
		assert len(presets) == 6
		assert len({p.key for p in presets}) == 6
	assert catalog.presets_for("toddler") == []


def test_coffee_shop_scene():
	scene = catalog.scene_for(Scenario(preset_key="coffee_shop"))
	assert scene.character_role == "Friendly Barista"
	assert scene.user_role == "Customer"


def test_preset_alias_resolves_to_shared_scene():
	assert catalog.scene_for(Scenario(preset_key="cafe_order")) is catalog.SCENES["coffee_shop"]


def test_preset_without_scene_uses_catalog_description():
	scene = catalog.scene_for(Scenario(preset_key="homework"))
	assert scene.situation == "Getting help with assignments"
	assert scene.openings


def test_free_text_scenario_builds_generic_scene():
	scene = catalog.scene_for(Scenario(free_text="Returning a broken phone"))
	assert scene.situation == "Returning a broken phone"
	assert scene.character_role == "English conversation partner"


def test_opening_line_is_deterministic_for_seeded_rng():
	scene = catalog.scene_for(Scenario(preset_key="coffee_shop"))
	first = catalog.opening_line(scene, _mina(), random.Random(3))
	assert first == catalog.opening_line(scene, _mina(), random.Random(3))
	assert "Mina" in first
	assert "{name}" not in first


def test_scene_description_names_roles():
	scene = catalog.scene_for(Scenario(preset_key="hotel"))
	text = catalog.scene_description(scene, _mina())
	assert "Concierge" in text
	assert "Hotel Guest" in text
