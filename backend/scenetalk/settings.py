from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Dialogue generation (Gemini via REST, optional OpenRouter fallback)
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="SceneTalk English Tutor", validation_alias="OPENROUTER_TITLE")

	# Speech synthesis providers, tried in this order
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	elevenlabs_api_key: str | None = Field(default=None, validation_alias="ELEVENLABS_API_KEY")
	supertone_api_key: str | None = Field(default=None, validation_alias="SUPERTONE_API_KEY")
	tts_providers: str = Field(default="openai,elevenlabs,supertone", validation_alias="TTS_PROVIDERS")
	# Optional self-hosted endpoint answering {text, voiceId, emotion} with {"audioUrl": ...}; listed as "custom"
	custom_tts_url: str | None = Field(default=None, validation_alias="CUSTOM_TTS_URL")
	custom_tts_api_key: str | None = Field(default=None, validation_alias="CUSTOM_TTS_API_KEY")
	# The browser may not support speechSynthesis; clients can override per session
	device_speech_supported: bool = Field(default=True, validation_alias="DEVICE_SPEECH_SUPPORTED")

	# Speech recognition: "google" (Cloud Speech-to-Text) or "whisper" (OpenAI)
	transcription_backend: str = Field(default="google", validation_alias="TRANSCRIPTION_BACKEND")
	transcription_language: str = Field(default="en", validation_alias="TRANSCRIPTION_LANGUAGE")

	# Remote call bounds (seconds)
	transcription_timeout: float = Field(default=20.0, validation_alias="TRANSCRIPTION_TIMEOUT")
	generation_timeout: float = Field(default=30.0, validation_alias="GENERATION_TIMEOUT")
	synthesis_timeout: float = Field(default=15.0, validation_alias="SYNTHESIS_TIMEOUT")

	# Conversation loop
	auto_listen_delay: float = Field(default=2.0, validation_alias="AUTO_LISTEN_DELAY")
	history_window: int = Field(default=6, validation_alias="HISTORY_WINDOW")
	playback_grace_seconds: float = Field(default=5.0, validation_alias="PLAYBACK_GRACE_SECONDS")
	# In-memory conversations untouched this long are closed
	conversation_idle_minutes: float = Field(default=60.0, validation_alias="CONVERSATION_IDLE_MINUTES")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed user
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def tts_provider_names(self) -> list[str]:
		return [p.strip().lower() for p in self.tts_providers.split(",") if p.strip()]

settings = Settings()
