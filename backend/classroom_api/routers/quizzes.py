"""
Live Quiz Module
================

Teachers create a quiz over one of their vocabulary folders for one of their
classes, then drive it through ``pending -> active -> ended`` while students
answer in real time.

API Endpoints (teacher, must own the quiz's class):
- POST /quizzes: create a quiz with a unique join code
- POST /quizzes/{id}/start | /pause | /end: lifecycle transitions
- GET /quizzes/{id}/monitor: live results and leaderboard

API Endpoints (student, must be a class member):
- POST /quizzes/enter-code: join by code, lazily creating a result
- GET /quizzes/{id}/lobby: who has joined before the start
- GET /quizzes/{id}/vocabulary: words to quiz on (active quizzes only)
- GET /quizzes/{id}/live: status, pause flag and the caller's result in one poll
  (teachers get the monitor view instead)
- POST /quizzes/{id}/answer: append one answer, score recomputed
- POST /quizzes/{id}/finish: close the caller's result
- GET /quizzes/{id}/results/{result_id}: result with its answers
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..access import ensure_member, ensure_teacher, get_or_404, is_teacher
from ..db import get_db
from ..models import (
	QUIZ_ACTIVE,
	QUIZ_ENDED,
	QUIZ_PENDING,
	RESULT_IN_PROGRESS,
	ROLE_ADMIN,
	ClassMember,
	Clazz,
	Folder,
	Quiz,
	QuizAnswerDetail,
	QuizResult,
	User,
)
from ..services import quiz_lifecycle as lifecycle
from ..services.codes import generate_unique_code, normalize_code
from .auth import get_current_user, require_admin
from .folders import VocabularyOut, vocabulary_out


router = APIRouter(prefix="/quizzes", tags=["quizzes"])

logger = logging.getLogger(__name__)

DIRECTIONS = ("en_vi", "vi_en", "random")


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class CreateQuizRequest(BaseModel):
	title: str
	description: Optional[str] = None
	clazz_id: int
	folder_id: int
	direction: str = "en_vi"
	time_per_question: int = Field(default=0, ge=0, le=600)


class PauseRequest(BaseModel):
	is_paused: bool


class EnterCodeRequest(BaseModel):
	quiz_code: str


class AnswerIn(BaseModel):
	question_text: str
	question_type: str
	correct_answer: str
	selected_answer: Optional[str] = None
	is_correct: bool = False
	vocabulary_id: Optional[int] = None


class AnswerRequest(BaseModel):
	result_id: int
	answer: AnswerIn


class FinishRequest(BaseModel):
	result_id: int


class QuizOut(BaseModel):
	id: int
	title: str
	description: Optional[str] = None
	quiz_code: str
	status: str
	is_paused: bool
	direction: str
	time_per_question: int
	clazz_id: int
	folder_id: int
	created_at: datetime
	ended_at: Optional[datetime] = None


class AnswerOut(BaseModel):
	id: int
	vocabulary_id: Optional[int] = None
	question_text: str
	question_type: str
	selected_answer: Optional[str] = None
	correct_answer: str
	is_correct: bool
	answered_at: datetime


class ResultOut(BaseModel):
	id: int
	quiz_id: int
	user_id: int
	score: int
	max_score: int
	status: str
	started_at: datetime
	ended_at: Optional[datetime] = None


def quiz_out(quiz: Quiz) -> QuizOut:
	return QuizOut(
		id=quiz.id,
		title=quiz.title,
		description=quiz.description,
		quiz_code=quiz.quiz_code,
		status=lifecycle.quiz_status(quiz),
		is_paused=bool(quiz.is_paused),
		direction=quiz.direction,
		time_per_question=quiz.time_per_question,
		clazz_id=quiz.clazz_id,
		folder_id=quiz.folder_id,
		created_at=quiz.created_at,
		ended_at=quiz.ended_at,
	)


def answer_out(a: QuizAnswerDetail) -> AnswerOut:
	return AnswerOut(
		id=a.id,
		vocabulary_id=a.vocabulary_id,
		question_text=a.question_text,
		question_type=a.question_type,
		selected_answer=a.selected_answer,
		correct_answer=a.correct_answer,
		is_correct=a.is_correct,
		answered_at=a.answered_at,
	)


def result_out(r: QuizResult) -> ResultOut:
	return ResultOut(
		id=r.id,
		quiz_id=r.quiz_id,
		user_id=r.user_id,
		score=r.score,
		max_score=r.max_score,
		status=lifecycle.result_status(r),
		started_at=r.started_at,
		ended_at=r.ended_at,
	)


# ============================================================================
# HELPERS
# ============================================================================

def _state_error(exc: lifecycle.QuizStateError) -> HTTPException:
	return HTTPException(status_code=400, detail=str(exc))


def _owned_quiz(db: Session, quiz_id: int, user: User) -> Quiz:
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	ensure_teacher(quiz.clazz, user)
	return quiz


def _own_result(db: Session, result_id: int, user: User) -> QuizResult:
	result = get_or_404(db, QuizResult, result_id, "Quiz result")
	if result.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	return result


def _word_count(quiz: Quiz) -> int:
	return len(quiz.folder.words) if quiz.folder is not None else 0


def _display_name(user: User) -> str:
	return user.name or user.email


# ============================================================================
# TEACHER ENDPOINTS
# ============================================================================

@router.post("", status_code=201, response_model=QuizOut)
def create_quiz(req: CreateQuizRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	title = (req.title or "").strip()
	if not title:
		raise HTTPException(status_code=400, detail="Missing fields")
	if req.direction not in DIRECTIONS:
		raise HTTPException(status_code=400, detail=f"direction must be one of {', '.join(DIRECTIONS)}")
	clazz = get_or_404(db, Clazz, req.clazz_id, "Class")
	ensure_teacher(clazz, user)
	folder = get_or_404(db, Folder, req.folder_id, "Folder")
	if folder.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	code = generate_unique_code(lambda c: db.query(Quiz.id).filter(Quiz.quiz_code == c).first() is not None)
	quiz = Quiz(
		title=title,
		description=req.description,
		quiz_code=code,
		status=QUIZ_PENDING,
		is_paused=False,
		direction=req.direction,
		time_per_question=req.time_per_question,
		clazz_id=clazz.id,
		folder_id=folder.id,
	)
	db.add(quiz)
	db.commit()
	db.refresh(quiz)
	logger.info("quiz %s created for class %s with code %s", quiz.id, clazz.id, code)
	return quiz_out(quiz)


@router.post("/{quiz_id}/start", response_model=QuizOut)
def start_quiz(quiz_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, quiz_id, user)
	try:
		lifecycle.start_quiz(quiz)
	except lifecycle.QuizStateError as exc:
		raise _state_error(exc)
	# Results opened in the lobby now know how many questions there are
	max_score = _word_count(quiz)
	for result in quiz.results:
		if lifecycle.result_status(result) == RESULT_IN_PROGRESS and not result.max_score:
			result.max_score = max_score
	db.commit()
	db.refresh(quiz)
	return quiz_out(quiz)


@router.post("/{quiz_id}/pause", response_model=QuizOut)
def pause_quiz(quiz_id: int, req: PauseRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, quiz_id, user)
	try:
		lifecycle.set_paused(quiz, req.is_paused)
	except lifecycle.QuizStateError as exc:
		raise _state_error(exc)
	db.commit()
	db.refresh(quiz)
	return quiz_out(quiz)


@router.post("/{quiz_id}/end", response_model=QuizOut)
def end_quiz(quiz_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, quiz_id, user)
	try:
		lifecycle.end_quiz(db, quiz)
	except lifecycle.QuizStateError as exc:
		raise _state_error(exc)
	db.commit()
	db.refresh(quiz)
	return quiz_out(quiz)


@router.get("/{quiz_id}/monitor")
def monitor_quiz(quiz_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, quiz_id, user)
	if lifecycle.quiz_status(quiz) == QUIZ_PENDING:
		raise HTTPException(status_code=400, detail="Cannot monitor quiz that has not started yet")
	return _monitor_payload(db, quiz)


def _monitor_payload(db: Session, quiz: Quiz) -> Dict[str, Any]:
	results = (
		db.query(QuizResult)
		.filter(QuizResult.quiz_id == quiz.id)
		.order_by(QuizResult.score.desc(), QuizResult.started_at.asc())
		.all()
	)
	entries: List[Dict[str, Any]] = []
	for r in results:
		answers = list(r.answers)
		correct = sum(1 for a in answers if a.is_correct)
		status = lifecycle.result_status(r)
		entries.append({
			**result_out(r).model_dump(),
			"user_name": _display_name(r.user),
			"answer_details": [answer_out(a).model_dump() for a in answers],
			"correct_count": correct,
			"incorrect_count": len(answers) - correct,
			"current_streak": lifecycle.current_streak(answers),
			"current_question": len(answers) if status == RESULT_IN_PROGRESS else r.max_score,
		})

	total_members = db.query(ClassMember).filter(ClassMember.clazz_id == quiz.clazz_id).count()
	completed = sum(1 for e in entries if e["status"] != RESULT_IN_PROGRESS)
	in_progress = sum(1 for e in entries if e["status"] == RESULT_IN_PROGRESS)
	return {
		"quiz": quiz_out(quiz),
		"results": entries,
		"leaderboard": lifecycle.leaderboard(entries),
		"total_members": total_members,
		"completed_count": completed,
		"in_progress_count": in_progress,
		"not_started_count": max(0, total_members - len({e["user_id"] for e in entries})),
	}


# ============================================================================
# STUDENT ENDPOINTS
# ============================================================================

@router.post("/enter-code")
def enter_code(req: EnterCodeRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	code = normalize_code(req.quiz_code)
	if not code:
		raise HTTPException(status_code=400, detail="Quiz code is required")
	quiz = db.query(Quiz).filter(Quiz.quiz_code == code).first()
	if quiz is None:
		raise HTTPException(status_code=404, detail="Quiz not found")
	status = lifecycle.quiz_status(quiz)
	if status == QUIZ_ENDED:
		raise HTTPException(status_code=400, detail="Quiz has already ended")
	ensure_member(db, quiz.clazz, user)

	existing = (
		db.query(QuizResult)
		.filter(QuizResult.quiz_id == quiz.id, QuizResult.user_id == user.id)
		.filter((QuizResult.ended_at.is_(None)) | (QuizResult.status == RESULT_IN_PROGRESS))
		.order_by(QuizResult.started_at.desc())
		.first()
	)
	created = False
	if existing is None:
		# A pending quiz does not know its length yet; start_quiz fills it in
		existing = QuizResult(
			quiz_id=quiz.id,
			user_id=user.id,
			score=0,
			max_score=_word_count(quiz) if status == QUIZ_ACTIVE else 0,
			status=RESULT_IN_PROGRESS,
			started_at=datetime.utcnow(),
		)
		db.add(existing)
		db.commit()
		db.refresh(existing)
		created = True
	return {
		"quiz": {
			"id": quiz.id,
			"title": quiz.title,
			"description": quiz.description,
			"quiz_code": quiz.quiz_code,
			"status": status,
			"vocabulary_count": _word_count(quiz) if status == QUIZ_ACTIVE else 0,
		},
		"result_id": existing.id,
		"started_at": existing.started_at,
		"created": created,
	}


@router.get("/{quiz_id}/lobby")
def quiz_lobby(quiz_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	teacher_view = user.role == ROLE_ADMIN and is_teacher(quiz.clazz, user)
	if user.role == ROLE_ADMIN and not teacher_view:
		raise HTTPException(status_code=403, detail="Forbidden")
	if not teacher_view:
		ensure_member(db, quiz.clazz, user)

	first_join: Dict[int, datetime] = {}
	for r in db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).order_by(QuizResult.started_at.asc()):
		first_join.setdefault(r.user_id, r.started_at)
	members = db.query(ClassMember).filter(ClassMember.clazz_id == quiz.clazz_id).all()
	joined = sorted(
		(
			{"user_id": m.user_id, "user_name": _display_name(m.user), "joined_at": first_join[m.user_id]}
			for m in members
			if m.user_id in first_join
		),
		key=lambda j: j["joined_at"],
	)
	status = lifecycle.quiz_status(quiz)
	return {
		"quiz": {
			"id": quiz.id,
			"title": quiz.title,
			"description": quiz.description,
			"quiz_code": quiz.quiz_code,
			"status": status,
		},
		"joined_members": joined,
		"total_members": len(members),
		"can_start": teacher_view and status == QUIZ_PENDING and len(joined) > 0,
	}


@router.get("/{quiz_id}/vocabulary")
def quiz_vocabulary(quiz_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	# Membership first so outsiders learn nothing about the quiz state
	ensure_member(db, quiz.clazz, user)
	try:
		lifecycle.ensure_readable(quiz)
	except lifecycle.QuizStateError as exc:
		raise _state_error(exc)
	words: List[VocabularyOut] = [vocabulary_out(v, quiz.folder.name) for v in quiz.folder.words]
	return {
		"quiz": {
			"id": quiz.id,
			"title": quiz.title,
			"description": quiz.description,
			"quiz_code": quiz.quiz_code,
			"vocabulary_count": len(words),
			"direction": quiz.direction,
			"time_per_question": quiz.time_per_question,
			"is_paused": bool(quiz.is_paused),
		},
		"vocabulary": words,
	}


@router.get("/{quiz_id}/live")
def quiz_live(quiz_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	"""Polling view in any state: monitor data for the teacher, own progress for a student."""
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	if user.role == ROLE_ADMIN:
		ensure_teacher(quiz.clazz, user)
		return _monitor_payload(db, quiz)
	ensure_member(db, quiz.clazz, user)

	status = lifecycle.quiz_status(quiz)
	result = (
		db.query(QuizResult)
		.filter(QuizResult.quiz_id == quiz.id, QuizResult.user_id == user.id)
		.order_by(QuizResult.started_at.desc(), QuizResult.id.desc())
		.first()
	)
	# Words are only handed out while the quiz is running
	words = [vocabulary_out(v, quiz.folder.name) for v in quiz.folder.words] if status == QUIZ_ACTIVE else []
	return {
		"quiz": {
			"id": quiz.id,
			"title": quiz.title,
			"description": quiz.description,
			"quiz_code": quiz.quiz_code,
			"status": status,
			"is_paused": bool(quiz.is_paused),
			"direction": quiz.direction,
			"time_per_question": quiz.time_per_question,
		},
		"vocabulary": words,
		"result_id": result.id if result else None,
		"user_result": {
			**result_out(result).model_dump(),
			"answers": [answer_out(a) for a in result.answers],
		} if result else None,
	}


@router.post("/{quiz_id}/answer")
def submit_answer(quiz_id: int, req: AnswerRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	try:
		lifecycle.ensure_accepting_answers(quiz)
	except lifecycle.QuizStateError as exc:
		raise _state_error(exc)
	result = _own_result(db, req.result_id, user)
	try:
		detail = lifecycle.record_answer(db, quiz, result, req.answer.model_dump())
	except lifecycle.QuizStateError as exc:
		db.rollback()
		raise _state_error(exc)
	db.commit()
	db.refresh(detail)
	total = db.query(QuizAnswerDetail).filter(QuizAnswerDetail.result_id == result.id).count()
	return {
		"success": True,
		"answer": answer_out(detail),
		"current_score": result.score,
		"total_answers": total,
	}


@router.post("/{quiz_id}/finish", response_model=ResultOut)
def finish_quiz(quiz_id: int, req: FinishRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = get_or_404(db, Quiz, quiz_id, "Quiz")
	result = _own_result(db, req.result_id, user)
	if result.quiz_id != quiz.id:
		raise HTTPException(status_code=400, detail="Result does not match quiz")
	lifecycle.finish_result(db, result)
	db.commit()
	db.refresh(result)
	return result_out(result)


@router.get("/{quiz_id}/results/{result_id}")
def get_result(quiz_id: int, result_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	result = get_or_404(db, QuizResult, result_id, "Result")
	if result.user_id != user.id and not is_teacher(result.quiz.clazz, user):
		raise HTTPException(status_code=403, detail="Forbidden")
	if result.quiz_id != quiz_id:
		raise HTTPException(status_code=400, detail="Result does not match quiz")
	return {
		"quiz": {"id": result.quiz.id, "title": result.quiz.title, "quiz_code": result.quiz.quiz_code},
		"result": result_out(result),
		"answers": [answer_out(a) for a in result.answers],
	}
