"""
Live quiz lifecycle
===================

A quiz moves ``pending -> active -> ended``; ``ended`` is terminal. While a quiz
is ``active`` the teacher may pause and resume it, which only flips
``is_paused``. Students can read the quiz vocabulary and submit answers only
while it is active.

Every function here works on ORM rows and leaves committing to the caller so a
request handler can apply one transition and commit once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ..models import (
	QUIZ_ACTIVE,
	QUIZ_ENDED,
	QUIZ_PENDING,
	RESULT_IN_PROGRESS,
	RESULT_SUBMITTED,
	Quiz,
	QuizAnswerDetail,
	QuizResult,
	Vocabulary,
)


logger = logging.getLogger(__name__)


class QuizStateError(Exception):
	"""Raised when an operation is not allowed in the quiz's current state."""


def quiz_status(quiz: Quiz) -> str:
	return quiz.status or QUIZ_PENDING


def result_status(result: QuizResult) -> str:
	if result.status:
		return result.status
	return RESULT_SUBMITTED if result.ended_at else RESULT_IN_PROGRESS


def start_quiz(quiz: Quiz) -> Quiz:
	if quiz_status(quiz) != QUIZ_PENDING:
		raise QuizStateError("Quiz can only be started when it is pending")
	quiz.status = QUIZ_ACTIVE
	quiz.is_paused = False
	logger.info("quiz %s started", quiz.id)
	return quiz


def set_paused(quiz: Quiz, is_paused: bool) -> Quiz:
	status = quiz_status(quiz)
	if status == QUIZ_PENDING:
		raise QuizStateError("Cannot pause a quiz that has not been started")
	if status == QUIZ_ENDED:
		raise QuizStateError("Quiz is already ended")
	quiz.is_paused = bool(is_paused)
	logger.info("quiz %s %s", quiz.id, "paused" if quiz.is_paused else "resumed")
	return quiz


def end_quiz(db: Session, quiz: Quiz, now: Optional[datetime] = None) -> int:
	"""End an active quiz and close every open result. Returns the number closed."""
	status = quiz_status(quiz)
	if status == QUIZ_PENDING:
		raise QuizStateError("Cannot end a quiz that has not been started")
	if status == QUIZ_ENDED:
		raise QuizStateError("Quiz is already ended")
	stamp = now or datetime.utcnow()
	quiz.status = QUIZ_ENDED
	quiz.is_paused = False
	quiz.ended_at = stamp
	res = db.execute(
		update(QuizResult)
		.where(QuizResult.quiz_id == quiz.id)
		.where(or_(QuizResult.ended_at.is_(None), QuizResult.status == RESULT_IN_PROGRESS))
		.values(ended_at=stamp, status=RESULT_SUBMITTED)
		.execution_options(synchronize_session="fetch")
	)
	closed = res.rowcount or 0
	logger.info("quiz %s ended, %s open results closed", quiz.id, closed)
	return closed


def ensure_readable(quiz: Quiz) -> None:
	"""Gate for the vocabulary endpoint: only an active quiz exposes its words."""
	status = quiz_status(quiz)
	if status == QUIZ_PENDING:
		raise QuizStateError("Quiz has not started yet. Please wait for the teacher to start it.")
	if status == QUIZ_ENDED:
		raise QuizStateError("Quiz has already ended")


def ensure_accepting_answers(quiz: Quiz) -> None:
	if quiz_status(quiz) != QUIZ_ACTIVE:
		raise QuizStateError("Quiz is not active")
	if quiz.is_paused:
		raise QuizStateError("Quiz is paused")


def recompute_score(db: Session, result: QuizResult) -> int:
	correct = db.scalar(
		select(func.count(QuizAnswerDetail.id))
		.where(QuizAnswerDetail.result_id == result.id)
		.where(QuizAnswerDetail.is_correct.is_(True))
	)
	result.score = int(correct or 0)
	return result.score


def record_answer(db: Session, quiz: Quiz, result: QuizResult, answer: Dict[str, Any]) -> QuizAnswerDetail:
	"""Append one answer to ``result`` and refresh its score.

	Only the per-answer correctness flag comes from the client; the score is
	always the count of correct rows stored for the result.
	"""
	ensure_accepting_answers(quiz)
	if result.quiz_id != quiz.id:
		raise QuizStateError("Result does not match quiz")
	if result_status(result) != RESULT_IN_PROGRESS:
		raise QuizStateError("Quiz result has already been submitted")
	vocabulary_id = answer.get("vocabulary_id")
	if vocabulary_id is not None:
		word = db.get(Vocabulary, vocabulary_id)
		if word is None or word.folder_id != quiz.folder_id:
			raise QuizStateError("Vocabulary item is not part of this quiz")
	detail = QuizAnswerDetail(
		result_id=result.id,
		vocabulary_id=vocabulary_id,
		question_text=answer["question_text"],
		question_type=answer["question_type"],
		selected_answer=answer.get("selected_answer"),
		correct_answer=answer["correct_answer"],
		is_correct=bool(answer.get("is_correct")),
		answered_at=datetime.utcnow(),
	)
	db.add(detail)
	db.flush()
	recompute_score(db, result)
	return detail


def finish_result(db: Session, result: QuizResult, now: Optional[datetime] = None) -> QuizResult:
	if result_status(result) == RESULT_SUBMITTED and result.ended_at is not None:
		return result
	recompute_score(db, result)
	result.status = RESULT_SUBMITTED
	result.ended_at = now or datetime.utcnow()
	return result


def current_streak(answers: Iterable[QuizAnswerDetail]) -> int:
	streak = 0
	for answer in reversed(list(answers)):
		if not answer.is_correct:
			break
		streak += 1
	return streak


def leaderboard(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
	"""Rank submitted results by percentage, then by who finished first."""
	board = []
	for r in entries:
		if r["status"] != RESULT_SUBMITTED:
			continue
		max_score = r["max_score"] or 0
		board.append({
			"user_id": r["user_id"],
			"user_name": r["user_name"],
			"score": r["score"],
			"max_score": max_score,
			"correct_count": r["correct_count"],
			"incorrect_count": r["incorrect_count"],
			"percentage": round(r["score"] / max_score * 100) if max_score > 0 else 0,
			"ended_at": r["ended_at"],
		})
	board.sort(key=lambda e: (-e["percentage"], e["ended_at"] or datetime.max))
	return board
