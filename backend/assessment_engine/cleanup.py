from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .manager import AttemptSession, AttemptState
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_sessions(sessions: Dict[str, AttemptSession], now: Optional[datetime] = None, retention_seconds: Optional[int] = None) -> int:
	"""Drop live sessions from memory once they are finished or abandoned.

	Only the in-memory registry is touched; attempt rows stay as they are in the store.
	"""
	now = now or datetime.now(timezone.utc)
	retention = timedelta(seconds=settings.session_retention_seconds if retention_seconds is None else retention_seconds)
	removed = 0
	for attempt_id, session in list(sessions.items()):
		if now - session.opened_at < retention:
			continue
		# A timed session whose countdown still runs belongs to an active student
		countdown = session.countdown
		if session.state is not AttemptState.PERSISTED and countdown is not None and countdown.task is not None and not countdown.task.done():
			continue
		if session.state in (AttemptState.SCORING, AttemptState.RESOLVED):
			continue
		if countdown is not None:
			countdown.cancel()
		del sessions[attempt_id]
		removed += 1
	if removed:
		logger.info("purged %d stale attempt sessions", removed)
	return removed
