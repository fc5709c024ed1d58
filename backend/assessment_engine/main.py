import asyncio
import logging

from fastapi import FastAPI

from .db import Base, engine
from .cleanup import purge_stale_sessions
from .logging_config import setup_logging
from .settings import settings
from .routers import attempts
from . import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

app = FastAPI(title="Assessment Attempt Engine")
app.include_router(attempts.router)

@app.get("/info")
def root():
	return {"status": "ok", "live_attempts": len(attempts._sessions), "default_language": settings.default_language}

async def _cleanup_watcher():
	# Sweep the live-session registry every hour
	while True:
		await asyncio.sleep(60 * 60)
		try:
			purge_stale_sessions(attempts._sessions)
		except Exception:
			logger.exception("session cleanup failed")

@app.on_event("startup")
async def startup_event():
	setup_logging()
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Start periodic cleanup loop
	asyncio.create_task(_cleanup_watcher())
