import os
import random
import tempfile

import pytest

# Isolate settings from the developer's environment before the app is imported
_DB_DIR = tempfile.mkdtemp(prefix="scenetalk-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
for _name in ("GEMINI_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY", "ELEVENLABS_API_KEY", "SUPERTONE_API_KEY", "CUSTOM_TTS_URL", "CUSTOM_TTS_API_KEY", "SEED_USERNAME", "SEED_PASSWORD"):
	os.environ.pop(_name, None)

from typing import Any, Dict, List, Optional, Union  # noqa: E402

from scenetalk.conversation.controller import ConversationTurnController  # noqa: E402
from scenetalk.conversation.generation import ResponseGenerator  # noqa: E402
from scenetalk.conversation.synthesis import DeviceSpeechFallback, SpeechProvider, SpeechSynthesisChain  # noqa: E402
from scenetalk.conversation.transcription import TranscriptionClient  # noqa: E402

from fakes import FakeCaptureDevice, FakeLLM, FakeProvider, FakeTranscriber, Harness, RecordingSink  # noqa: E402


@pytest.fixture
def make_controller():
	def _make(
		transcripts: Optional[List[Union[str, Exception]]] = None,
		llm_replies: Optional[List[Union[Dict[str, Any], Exception]]] = None,
		providers: Optional[List[SpeechProvider]] = None,
		device_supported: bool = True,
		seed: int = 7,
	) -> Harness:
		device = FakeCaptureDevice()
		transcriber = FakeTranscriber(transcripts)
		llm = FakeLLM(llm_replies)
		providers = providers if providers is not None else [FakeProvider("A")]
		sink = RecordingSink()
		replay_sink = RecordingSink()
		controller = ConversationTurnController(
			device,
			TranscriptionClient(transcriber, timeout=1.0),
			ResponseGenerator(llm, timeout=1.0),
			SpeechSynthesisChain(providers, DeviceSpeechFallback(device_supported), timeout=1.0),
			sink,
			replay_sink,
			auto_listen_delay=0,
			rng=random.Random(seed),
		)
		return Harness(controller, device, transcriber, llm, providers, sink, replay_sink)

	return _make
