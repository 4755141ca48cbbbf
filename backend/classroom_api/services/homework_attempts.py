"""Homework deadlines, numbered attempts and time tracking.

Deadlines are enforced lazily: any read of a homework row flips an expired
``active`` row to ``locked``. Attempts are append-only; a retry adds a new row
with the next ``attempt_number`` and leaves earlier attempts untouched.
"""
from __future__ import annotations

import logging
import math
import random
import re
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import (
	HOMEWORK_ACTIVE,
	HOMEWORK_LOCKED,
	SUBMISSION_GRADED,
	SUBMISSION_IN_PROGRESS,
	SUBMISSION_SUBMITTED,
	Homework,
	HomeworkSubmission,
)


logger = logging.getLogger(__name__)

BLANK = "_____"
HIDE_RATIO = 0.3


class HomeworkLockedError(Exception):
	pass


def is_expired(homework: Homework, now: Optional[datetime] = None) -> bool:
	return homework.deadline < (now or datetime.utcnow())


def apply_lazy_lock(homework: Homework, now: Optional[datetime] = None) -> bool:
	"""Lock ``homework`` if its deadline passed. Returns True when it changed."""
	if homework.status == HOMEWORK_ACTIVE and is_expired(homework, now):
		homework.status = HOMEWORK_LOCKED
		logger.info("homework %s locked after deadline %s", homework.id, homework.deadline)
		return True
	return False


def lock_expired(homework_rows: Iterable[Homework], now: Optional[datetime] = None) -> int:
	stamp = now or datetime.utcnow()
	return sum(1 for hw in homework_rows if apply_lazy_lock(hw, stamp))


def ensure_open(homework: Homework, now: Optional[datetime] = None) -> None:
	if homework.status == HOMEWORK_LOCKED or is_expired(homework, now):
		raise HomeworkLockedError("Homework is locked or deadline passed")


def latest_attempt(db: Session, homework_id: int, user_id: int) -> Optional[HomeworkSubmission]:
	return db.scalars(
		select(HomeworkSubmission)
		.where(HomeworkSubmission.homework_id == homework_id)
		.where(HomeworkSubmission.user_id == user_id)
		.order_by(HomeworkSubmission.attempt_number.desc())
		.limit(1)
	).first()


def list_attempts(db: Session, homework_id: int, user_id: int) -> List[HomeworkSubmission]:
	return list(db.scalars(
		select(HomeworkSubmission)
		.where(HomeworkSubmission.homework_id == homework_id)
		.where(HomeworkSubmission.user_id == user_id)
		.order_by(HomeworkSubmission.attempt_number.asc())
	))


def _new_attempt(homework_id: int, user_id: int, attempt_number: int, now: datetime, seconds: int = 0) -> HomeworkSubmission:
	return HomeworkSubmission(
		homework_id=homework_id,
		user_id=user_id,
		attempt_number=attempt_number,
		status=SUBMISSION_IN_PROGRESS,
		started_at=now,
		last_activity_at=now,
		time_spent_seconds=seconds,
		created_at=now,
	)


def ensure_attempt(db: Session, homework: Homework, user_id: int, now: Optional[datetime] = None) -> HomeworkSubmission:
	"""Return the current attempt, creating attempt 1 when the user has none."""
	stamp = now or datetime.utcnow()
	submission = latest_attempt(db, homework.id, user_id)
	if submission is None:
		submission = _new_attempt(homework.id, user_id, 1, stamp)
		db.add(submission)
	else:
		submission.last_activity_at = stamp
	db.flush()
	return submission


def sanitize_increment(raw: object) -> int:
	try:
		value = float(raw)
	except (TypeError, ValueError):
		return 0
	if not math.isfinite(value) or value <= 0:
		return 0
	return int(round(value))


def record_progress(db: Session, homework: Homework, user_id: int, seconds: object, now: Optional[datetime] = None) -> HomeworkSubmission:
	"""Add ``seconds`` to the current attempt, creating attempt 1 on the first ping."""
	stamp = now or datetime.utcnow()
	apply_lazy_lock(homework, stamp)
	if homework.status == HOMEWORK_LOCKED:
		raise HomeworkLockedError("Homework is locked")
	increment = sanitize_increment(seconds)
	submission = latest_attempt(db, homework.id, user_id)
	if submission is None:
		submission = _new_attempt(homework.id, user_id, 1, stamp, seconds=increment)
		db.add(submission)
	else:
		submission.time_spent_seconds = (submission.time_spent_seconds or 0) + increment
		submission.last_activity_at = stamp
	db.flush()
	return submission


def start_retry(db: Session, homework: Homework, user_id: int, now: Optional[datetime] = None) -> HomeworkSubmission:
	stamp = now or datetime.utcnow()
	ensure_open(homework, stamp)
	previous = latest_attempt(db, homework.id, user_id)
	attempt_number = (previous.attempt_number if previous else 0) + 1
	submission = _new_attempt(homework.id, user_id, attempt_number, stamp)
	db.add(submission)
	db.flush()
	logger.info("homework %s user %s started attempt %s", homework.id, user_id, attempt_number)
	return submission


def normalize_answer(value: Optional[str]) -> str:
	return re.sub(r"\s+", " ", (value or "").strip()).lower()


def submit_answer(db: Session, homework: Homework, user_id: int, answer: Optional[str], now: Optional[datetime] = None) -> tuple[HomeworkSubmission, Optional[bool]]:
	"""Store ``answer`` on the current attempt and grade it against the key if there is one."""
	stamp = now or datetime.utcnow()
	ensure_open(homework, stamp)
	submission = latest_attempt(db, homework.id, user_id)
	if submission is None:
		submission = _new_attempt(homework.id, user_id, 1, stamp)
		db.add(submission)
	elapsed = max(0, int(round((stamp - submission.started_at).total_seconds())))
	submission.time_spent_seconds = max(submission.time_spent_seconds or 0, elapsed)

	is_correct: Optional[bool] = None
	if homework.answer_text:
		is_correct = normalize_answer(answer) == normalize_answer(homework.answer_text)
		submission.score = 1 if is_correct else 0
		submission.status = SUBMISSION_GRADED
	else:
		submission.score = None
		submission.status = SUBMISSION_SUBMITTED
	submission.answer = answer or None
	submission.submitted_at = stamp
	submission.last_activity_at = stamp
	db.flush()
	return submission, is_correct


def processed_answer_text(homework: Homework, rng: Optional[random.Random] = None) -> Optional[str]:
	"""Listening homework without a prompt shows its transcript with words hidden."""
	if homework.prompt_text or homework.type != "listening" or not homework.answer_text:
		return None
	if homework.hide_mode == "all":
		return ""
	if homework.hide_mode == "random":
		words = homework.answer_text.split()
		# First and last words stay visible
		interior = list(range(1, len(words) - 1))
		count = min(int(len(words) * HIDE_RATIO), len(interior))
		hidden = set((rng or random).sample(interior, count)) if count > 0 else set()
		return " ".join(BLANK if i in hidden else w for i, w in enumerate(words))
	return homework.answer_text
