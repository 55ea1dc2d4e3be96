from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession, LearningSession


def purge_older_than_one_week(db: Session) -> int:
	threshold = datetime.utcnow() - timedelta(days=7)
	removed = 0

	# Saved practice runs nobody touched for a week
	res = db.execute(delete(LearningSession).where(LearningSession.updated_at < threshold))
	removed += res.rowcount or 0

	# Login sessions idle for a week; their tokens stop validating
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	removed += res.rowcount or 0

	db.commit()
	return removed
