import asyncio
import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from .cleanup import purge_older_than_one_week
from .db import Base, engine, ensure_schema, get_db
from .routers import auth, conversation, dialogue, health, presets, speech
from .services import close_llm_client
from .settings import settings
from .utils.logging import setup_logging

setup_logging(settings.log_level)
logger = logging.getLogger("scenetalk")

BASE_DIR = Path(__file__).resolve().parents[2]
FRONTEND_DIR = BASE_DIR / "frontend"

app = FastAPI(title="SceneTalk API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(presets.router)
app.include_router(conversation.router)
app.include_router(speech.router)
app.include_router(dialogue.router)

# Static frontend at /app when it has been built next to the backend
if FRONTEND_DIR.is_dir():
	app.mount("/app", StaticFiles(directory=FRONTEND_DIR, html=True), name="frontend")

	@app.get("/", include_in_schema=False)
	async def redirect_root_to_app():
		return RedirectResponse(url="/app")


def _purge_once() -> None:
	db = next(get_db())
	try:
		removed = purge_older_than_one_week(db)
		if removed:
			logger.info("Purged %d stale rows", removed)
	except Exception as e:
		logger.warning("Weekly cleanup failed: %s", e)
	finally:
		db.close()


async def _cleanup_watcher():
	# Daily; the startup hook already ran the first pass
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_purge_once()


async def _idle_conversation_watcher():
	interval = max(60.0, settings.conversation_idle_minutes * 60 / 4)
	while True:
		await asyncio.sleep(interval)
		await conversation.evict_idle_controllers(settings.conversation_idle_minutes * 60)


_background_tasks = set()


@app.on_event("startup")
async def startup_event():
	Base.metadata.create_all(bind=engine)
	try:
		ensure_schema()
	except Exception as e:
		logger.warning("Schema migration skipped: %s", e)
	_purge_once()
	for watcher in (_cleanup_watcher, _idle_conversation_watcher):
		task = asyncio.create_task(watcher())
		_background_tasks.add(task)
		task.add_done_callback(_background_tasks.discard)


@app.on_event("shutdown")
async def shutdown_event():
	for task in list(_background_tasks):
		task.cancel()
	for entry in list(conversation._controllers.values()):
		await entry.controller.close()
	conversation._controllers.clear()
	await close_llm_client()
