import base64
import random
import time

import pytest
from fastapi.testclient import TestClient

from scenetalk.conversation.controller import ConversationTurnController
from scenetalk.conversation.generation import FALLBACK_REPLY, ResponseGenerator
from scenetalk.conversation.synthesis import DeviceSpeechFallback, SpeechSynthesisChain
from scenetalk.conversation.transcription import TranscriptionClient
from scenetalk.db import SessionLocal
from scenetalk.main import app
from scenetalk.models import AuthUser
from scenetalk.routers import conversation
from scenetalk.services import (
	get_controller_factory,
	get_llm_client,
	get_response_generator,
	get_synthesis_chain_factory,
	get_transcription_client,
)

from fakes import FakeCaptureDevice, FakeLLM, FakeProvider, FakeTranscriber, RecordingSink

CHARACTER = {"name": "Mina", "gender": "female", "style": "cheerful"}
AUDIO = base64.b64encode(b"\x00\x10" * 64).decode()


@pytest.fixture
def client():
	transcripts = ["I'd like a latte please", "Oat milk, thanks"]
	built = []

	def factory(device_supported=None):
		controller = ConversationTurnController(
			FakeCaptureDevice(),
			TranscriptionClient(FakeTranscriber(transcripts), timeout=1.0),
			ResponseGenerator(FakeLLM(), timeout=1.0),
			SpeechSynthesisChain([FakeProvider("A")], DeviceSpeechFallback(True), timeout=1.0),
			RecordingSink(),
			RecordingSink(),
			auto_listen_delay=0,
			rng=random.Random(3),
		)
		built.append(controller)
		return controller

	app.dependency_overrides[get_controller_factory] = lambda: factory
	app.dependency_overrides[get_llm_client] = lambda: None
	app.dependency_overrides[get_response_generator] = lambda: ResponseGenerator(None)
	recognizer = TranscriptionClient(FakeTranscriber(["Hello Hello there", ""]), timeout=1.0)
	app.dependency_overrides[get_transcription_client] = lambda: recognizer
	app.dependency_overrides[get_synthesis_chain_factory] = lambda: (
		lambda device_supported=None: SpeechSynthesisChain([FakeProvider("A", fail=True)], DeviceSpeechFallback(device_supported is not False), timeout=1.0)
	)
	with TestClient(app) as c:
		c.built = built
		yield c
	app.dependency_overrides.clear()
	conversation._controllers.clear()


@pytest.fixture
def headers(client):
	resp = client.post("/auth/token", data={"username": "guest", "password": "x"})
	assert resp.status_code == 200
	return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _start(client, headers, **overrides):
	body = {"audience": "general", "character": CHARACTER, "scenario": {"preset_key": "coffee_shop"}}
	body.update(overrides)
	return client.post("/conversation/start", json=body, headers=headers)


def _wait_idle(client, headers, session_id, turns=None):
	view = None
	for _ in range(200):
		view = client.get(f"/conversation/{session_id}", headers=headers).json()
		if view["state"] == "idle" and (turns is None or len(view["turns"]) == turns):
			return view
		time.sleep(0.01)
	raise AssertionError(f"conversation never settled: {view}")


def test_health_and_presets(client):
	health = client.get("/health").json()
	assert health["status"] == "ok"
	assert health["llm_configured"] is False

	presets = client.get("/presets").json()
	assert set(presets) == {"student", "general", "business"}
	assert all(len(items) == 6 for items in presets.values())
	assert client.get("/presets/business").status_code == 200
	assert client.get("/presets/pirates").status_code == 404


def test_requires_login(client):
	assert client.post("/conversation/start", json={}).status_code == 401
	bad = client.post("/auth/token", data={"username": "nobody", "password": "wrong"})
	assert bad.status_code == 401


def test_start_opens_scene(client, headers):
	resp = _start(client, headers)
	assert resp.status_code == 200
	data = resp.json()
	view = data["view"]
	assert [t["speaker"] for t in view["turns"]] == ["system", "character"]
	assert "Mina" in view["turns"][1]["text"]
	assert view["progress"] == 10
	assert view["scene"]["character_role"] == "Friendly Barista"
	_wait_idle(client, headers, data["session_id"])


def test_invalid_scenario_is_rejected(client, headers):
	resp = _start(client, headers, scenario={"preset_key": "coffee_shop", "free_text": "at the park"})
	assert resp.status_code == 400
	resp = _start(client, headers, scenario={})
	assert resp.status_code == 400


def test_listen_flow_records_a_turn(client, headers):
	session_id = _start(client, headers).json()["session_id"]
	_wait_idle(client, headers, session_id)

	view = client.post(f"/conversation/{session_id}/listen/start", headers=headers).json()
	assert view["state"] == "listening"
	assert client.post(f"/conversation/{session_id}/listen/start", headers=headers).status_code == 409
	chunk = client.post(f"/conversation/{session_id}/listen/audio", json={"audio_base64": AUDIO}, headers=headers)
	assert chunk.status_code == 200
	client.post(f"/conversation/{session_id}/listen/stop", headers=headers)

	view = _wait_idle(client, headers, session_id, turns=4)
	assert view["turns"][2]["text"] == "I'd like a latte please"
	assert view["turns"][3]["speaker"] == "character"
	assert 0 <= view["turns"][3]["feedback"]["accuracy"] <= 100
	assert view["progress"] == 25

	late = client.post(f"/conversation/{session_id}/listen/audio", json={"audio_base64": AUDIO}, headers=headers)
	assert late.status_code == 409


def test_microphone_unavailable_is_forbidden(client, headers):
	session_id = _start(client, headers).json()["session_id"]
	_wait_idle(client, headers, session_id)
	# Fake devices have no microphone flag; deny on the controller the route built
	client.built[-1].capture.device.deny = True
	resp = client.post(f"/conversation/{session_id}/listen/start", headers=headers)
	assert resp.status_code == 403
	view = client.get(f"/conversation/{session_id}", headers=headers).json()
	assert view["state"] == "idle"
	assert view["last_error"]


def test_recording_replay_and_reset(client, headers):
	session_id = _start(client, headers).json()["session_id"]
	_wait_idle(client, headers, session_id)

	resp = client.post(f"/conversation/{session_id}/recording", json={"audio_base64": AUDIO}, headers=headers)
	assert resp.status_code == 200
	_wait_idle(client, headers, session_id, turns=4)

	replayed = client.post(f"/conversation/{session_id}/replay/3", headers=headers)
	assert replayed.status_code == 200
	assert replayed.json()["audio_url"] == "mock://A/2"
	assert client.post(f"/conversation/{session_id}/replay/0", headers=headers).status_code == 409
	assert client.post(f"/conversation/{session_id}/replay/99", headers=headers).status_code == 409

	ended = client.post(f"/conversation/{session_id}/playback/ended", json={"channel": "replay"}, headers=headers)
	assert ended.json() == {"ok": True, "acknowledged": False}

	view = client.post(f"/conversation/{session_id}/reset", headers=headers).json()
	assert [t["speaker"] for t in view["turns"]] == ["system", "character"]
	assert view["progress"] == 10


def test_auto_listen_toggle(client, headers):
	session_id = _start(client, headers, auto_listen=True).json()["session_id"]
	view = client.get(f"/conversation/{session_id}", headers=headers).json()
	assert view["auto_listen"] is True
	view = client.post(f"/conversation/{session_id}/auto-listen", json={"enabled": False}, headers=headers).json()
	assert view["auto_listen"] is False


def test_save_restore_and_delete(client, headers):
	session_id = _start(client, headers).json()["session_id"]
	_wait_idle(client, headers, session_id)
	client.post(f"/conversation/{session_id}/recording", json={"audio_base64": AUDIO}, headers=headers)
	before = _wait_idle(client, headers, session_id, turns=4)

	saved = client.post(f"/conversation/{session_id}/save", headers=headers)
	assert saved.json() == {"ok": True, "session_id": session_id, "turns": 4}

	assert client.delete(f"/conversation/{session_id}", headers=headers).json() == {"ok": True}
	assert client.get(f"/conversation/{session_id}", headers=headers).status_code == 404

	restored = client.post(f"/conversation/restore/{session_id}", headers=headers)
	assert restored.status_code == 200
	view = restored.json()["view"]
	assert view["state"] == "idle"
	assert [t["text"] for t in view["turns"]] == [t["text"] for t in before["turns"]]
	assert view["progress"] == before["progress"]

	assert client.post("/conversation/restore/missing", headers=headers).status_code == 404


def test_other_users_cannot_see_a_session(client, headers):
	session_id = _start(client, headers).json()["session_id"]
	register = client.post("/auth/register", json={
		"username": "learner1", "password": "secret-pass", "email": "l@example.com", "phone": "555-0100",
	})
	assert register.status_code == 201
	token = client.post("/auth/token", data={"username": "learner1", "password": "secret-pass"}).json()["access_token"]
	other = {"Authorization": f"Bearer {token}"}
	assert client.get(f"/conversation/{session_id}", headers=other).status_code == 404


def test_speech_endpoints(client, headers):
	tts = client.post("/speech/tts", json={"text": "Hello!", "role": "Friendly Barista"}, headers=headers)
	assert tts.status_code == 200
	assert tts.json()["provider"] == "device"
	assert tts.json()["replayable"] is False

	unavailable = client.post("/speech/tts", json={"text": "Hello!", "device_speech_supported": False}, headers=headers)
	assert unavailable.status_code == 503

	recognized = client.post("/speech/recognize", json={"audio_base64": f"data:audio/webm;base64,{AUDIO}"}, headers=headers)
	assert recognized.json() == {"text": "Hello there", "empty": False}
	silent = client.post("/speech/recognize", json={"audio_base64": AUDIO}, headers=headers)
	assert silent.json() == {"text": "", "empty": True}
	assert client.post("/speech/recognize", json={"audio_base64": "***"}, headers=headers).status_code == 400

	reply = client.post("/speech/respond", json={"user_text": "I like coffee", "character": CHARACTER}, headers=headers)
	assert reply.status_code == 200
	assert reply.json()["response"] == FALLBACK_REPLY
	assert reply.json()["degraded"] is True


def test_dialogue_falls_back_to_catalog_lines(client, headers):
	resp = client.post("/dialogue/generate", json={
		"audience": "general", "character": CHARACTER, "scenario": {"preset_key": "coffee_shop"},
	}, headers=headers)
	assert resp.status_code == 200
	data = resp.json()
	assert data["generated"] is False
	assert len(data["lines"]) == 3 and len(data["focus_phrases"]) == 3
	assert any("Mina" in line for line in data["lines"])

	bad = client.post("/dialogue/generate", json={"character": CHARACTER, "scenario": {}}, headers=headers)
	assert bad.status_code == 400


def test_request_quota_is_enforced(client):
	client.post("/auth/register", json={
		"username": "quota1", "password": "pw-123", "email": "q@example.com", "phone": "555-0101",
	})
	db = SessionLocal()
	try:
		row = db.get(AuthUser, "quota1")
		row.requests_limit = 1
		db.commit()
	finally:
		db.close()
	token = client.post("/auth/token", data={"username": "quota1", "password": "pw-123"}).json()["access_token"]
	auth = {"Authorization": f"Bearer {token}"}
	body = {"user_text": "Hi", "character": CHARACTER}
	assert client.post("/speech/respond", json=body, headers=auth).status_code == 200
	assert client.post("/speech/respond", json=body, headers=auth).status_code == 429


def test_register_validates_fields(client):
	short = client.post("/auth/register", json={"username": "ab", "password": "x", "email": "a@b.c", "phone": "555"})
	assert short.status_code == 422
	reserved = client.post("/auth/register", json={"username": "Guest", "password": "x", "email": "a@b.c", "phone": "555"})
	assert reserved.status_code == 400


def test_idle_conversations_are_evicted(client, headers):
	stale_id = _start(client, headers).json()["session_id"]
	_wait_idle(client, headers, stale_id)
	stale_controller = client.built[-1]
	conversation._controllers[stale_id].last_active = time.monotonic() - 2 * 60 * 60

	fresh_id = _start(client, headers).json()["session_id"]
	assert stale_id not in conversation._controllers
	assert fresh_id in conversation._controllers
	assert stale_controller.session is None
	assert client.get(f"/conversation/{stale_id}", headers=headers).status_code == 404
	assert client.get(f"/conversation/{fresh_id}", headers=headers).status_code == 200
