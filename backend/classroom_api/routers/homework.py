from __future__ import annotations
import base64
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..access import ensure_member, ensure_teacher, get_or_404, is_member, is_teacher
from ..db import get_db
from ..models import HOMEWORK_ACTIVE, HOMEWORK_LOCKED, Clazz, Homework, HomeworkSubmission, User
from ..services import homework_attempts as attempts
from ..services.speech_assessment import PronunciationAssessment, assess_speech
from .auth import get_current_user, require_admin


router = APIRouter(prefix="/homework", tags=["homework"])

logger = logging.getLogger(__name__)

HOMEWORK_TYPES = ("listening", "speaking", "reading", "writing")
HIDE_MODES = ("all", "random", "none")


class CreateHomeworkRequest(BaseModel):
	clazz_id: int
	title: str
	type: str = "listening"
	deadline: datetime
	description: Optional[str] = None
	prompt_text: Optional[str] = None
	answer_text: Optional[str] = None
	speaking_text: Optional[str] = None
	hide_mode: str = "all"


class ProgressRequest(BaseModel):
	# Loose on purpose: garbage increments count as zero rather than failing the ping
	time_spent_seconds: Optional[float | str] = 0


class SubmitRequest(BaseModel):
	answer: Optional[str] = None


class AssessRequest(BaseModel):
	transcribed_text: str


class UpdateHomeworkRequest(BaseModel):
	title: Optional[str] = None
	description: Optional[str] = None
	deadline: Optional[datetime] = None
	prompt_text: Optional[str] = None
	answer_text: Optional[str] = None
	speaking_text: Optional[str] = None
	hide_mode: Optional[str] = None
	status: Optional[str] = None


class SubmissionOut(BaseModel):
	id: int
	homework_id: int
	user_id: int
	attempt_number: int
	answer: Optional[str] = None
	transcribed_text: Optional[str] = None
	score: Optional[int] = None
	status: str
	time_spent_seconds: int
	started_at: datetime
	last_activity_at: datetime
	submitted_at: Optional[datetime] = None
	has_audio: bool = False


class HomeworkOut(BaseModel):
	id: int
	clazz_id: int
	title: str
	description: Optional[str] = None
	type: str
	deadline: datetime
	status: str
	prompt_text: Optional[str] = None
	speaking_text: Optional[str] = None
	hide_mode: str
	created_at: datetime
	submissions: List[SubmissionOut] = []


def submission_out(s: HomeworkSubmission) -> SubmissionOut:
	return SubmissionOut(
		id=s.id,
		homework_id=s.homework_id,
		user_id=s.user_id,
		attempt_number=s.attempt_number,
		answer=s.answer,
		transcribed_text=s.transcribed_text,
		score=s.score,
		status=s.status,
		time_spent_seconds=s.time_spent_seconds or 0,
		started_at=s.started_at,
		last_activity_at=s.last_activity_at,
		submitted_at=s.submitted_at,
		has_audio=bool(s.audio_url or s.audio_data),
	)


def homework_out(hw: Homework, submissions: List[HomeworkSubmission]) -> HomeworkOut:
	# answer_text is the answer key and is deliberately absent here
	return HomeworkOut(
		id=hw.id,
		clazz_id=hw.clazz_id,
		title=hw.title,
		description=hw.description,
		type=hw.type,
		deadline=hw.deadline,
		status=hw.status,
		prompt_text=hw.prompt_text,
		speaking_text=hw.speaking_text,
		hide_mode=hw.hide_mode,
		created_at=hw.created_at,
		submissions=[submission_out(s) for s in submissions],
	)


def _member_homework(db: Session, homework_id: int, user: User) -> Homework:
	hw = get_or_404(db, Homework, homework_id, "Homework")
	ensure_member(db, hw.clazz, user)
	return hw


def _locked(exc: attempts.HomeworkLockedError) -> HTTPException:
	return HTTPException(status_code=400, detail=str(exc))


def _owned_homework(db: Session, homework_id: int, user: User) -> Homework:
	hw = get_or_404(db, Homework, homework_id, "Homework")
	ensure_teacher(hw.clazz, user)
	return hw


def _homework_submission(db: Session, hw: Homework, submission_id: int) -> HomeworkSubmission:
	submission = get_or_404(db, HomeworkSubmission, submission_id, "Submission")
	if submission.homework_id != hw.id:
		raise HTTPException(status_code=400, detail="Submission not in this homework")
	return submission


def _utc_naive(value: datetime) -> datetime:
	if value.tzinfo is not None:
		# Stored naive in UTC like every other timestamp
		return value.astimezone(timezone.utc).replace(tzinfo=None)
	return value


def _student(user: User) -> dict:
	return {"id": user.id, "name": user.name, "email": user.email}


@router.post("", status_code=201, response_model=HomeworkOut)
def create_homework(req: CreateHomeworkRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	title = (req.title or "").strip()
	if not title:
		raise HTTPException(status_code=400, detail="Title is required")
	if req.type not in HOMEWORK_TYPES:
		raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(HOMEWORK_TYPES)}")
	if req.hide_mode not in HIDE_MODES:
		raise HTTPException(status_code=400, detail=f"hide_mode must be one of {', '.join(HIDE_MODES)}")
	if req.type == "speaking" and not (req.speaking_text or "").strip():
		raise HTTPException(status_code=400, detail="speaking_text is required for speaking homework")
	clazz = get_or_404(db, Clazz, req.clazz_id, "Class")
	ensure_teacher(clazz, user)
	deadline = _utc_naive(req.deadline)
	hw = Homework(
		clazz_id=clazz.id,
		title=title,
		description=req.description,
		type=req.type,
		deadline=deadline,
		status=HOMEWORK_ACTIVE,
		prompt_text=req.prompt_text,
		answer_text=req.answer_text,
		speaking_text=req.speaking_text,
		hide_mode=req.hide_mode,
	)
	db.add(hw)
	db.commit()
	db.refresh(hw)
	return homework_out(hw, [])


@router.get("/class/{class_id}", response_model=List[HomeworkOut])
def list_class_homework(class_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	clazz = get_or_404(db, Clazz, class_id, "Class")
	ensure_member(db, clazz, user, allow_teacher=True)
	rows = (
		db.query(Homework)
		.filter(Homework.clazz_id == class_id)
		.order_by(Homework.created_at.desc(), Homework.id.desc())
		.all()
	)
	if attempts.lock_expired(rows):
		db.commit()
	out = []
	for hw in rows:
		latest = attempts.latest_attempt(db, hw.id, user.id)
		out.append(homework_out(hw, [latest] if latest else []))
	return out


@router.get("/{homework_id}")
def get_homework(homework_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	hw = _member_homework(db, homework_id, user)
	now = datetime.utcnow()
	attempts.apply_lazy_lock(hw, now)
	if hw.status == HOMEWORK_LOCKED:
		# No new attempt can be used once the deadline has passed
		submission = attempts.latest_attempt(db, hw.id, user.id)
	else:
		submission = attempts.ensure_attempt(db, hw, user.id, now)
	db.commit()
	db.refresh(hw)
	if submission is not None:
		db.refresh(submission)
	return {
		**homework_out(hw, [submission] if submission else []).model_dump(),
		"clazz": {"id": hw.clazz.id, "name": hw.clazz.name},
		"processed_answer_text": attempts.processed_answer_text(hw),
	}


@router.post("/{homework_id}/progress", response_model=SubmissionOut)
def track_progress(homework_id: int, req: ProgressRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	hw = _member_homework(db, homework_id, user)
	try:
		submission = attempts.record_progress(db, hw, user.id, req.time_spent_seconds)
	except attempts.HomeworkLockedError as exc:
		# Keep the lazy lock even though the ping is rejected
		db.commit()
		raise _locked(exc)
	db.commit()
	db.refresh(submission)
	return submission_out(submission)


@router.post("/{homework_id}/retry", response_model=SubmissionOut)
def retry_homework(homework_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	hw = _member_homework(db, homework_id, user)
	try:
		submission = attempts.start_retry(db, hw, user.id)
	except attempts.HomeworkLockedError as exc:
		if attempts.apply_lazy_lock(hw):
			db.commit()
		raise _locked(exc)
	db.commit()
	db.refresh(submission)
	return submission_out(submission)


@router.get("/{homework_id}/attempts", response_model=List[SubmissionOut])
def list_my_attempts(homework_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	hw = _member_homework(db, homework_id, user)
	return [submission_out(s) for s in attempts.list_attempts(db, hw.id, user.id)]


@router.post("/{homework_id}/submit")
def submit_homework(homework_id: int, req: SubmitRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	hw = _member_homework(db, homework_id, user)
	try:
		submission, is_correct = attempts.submit_answer(db, hw, user.id, req.answer)
	except attempts.HomeworkLockedError:
		if attempts.apply_lazy_lock(hw):
			db.commit()
		raise HTTPException(status_code=400, detail="This homework is locked. Deadline has passed.")
	db.commit()
	db.refresh(submission)
	return {**submission_out(submission).model_dump(), "is_correct": is_correct}


@router.get("/{homework_id}/submissions/{submission_id}")
def submission_detail(homework_id: int, submission_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	submission = get_or_404(db, HomeworkSubmission, submission_id, "Submission")
	if submission.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	if submission.homework_id != homework_id:
		raise HTTPException(status_code=400, detail="Submission not in this homework")
	hw = submission.homework
	return {
		**submission_out(submission).model_dump(),
		"homework": {
			"id": hw.id,
			"title": hw.title,
			"type": hw.type,
			"speaking_text": hw.speaking_text,
			"deadline": hw.deadline,
			"status": hw.status,
		},
		"assessment": json.loads(submission.assessment) if submission.assessment else None,
	}


def _can_hear(db: Session, submission: HomeworkSubmission, user: User) -> bool:
	clazz = submission.homework.clazz
	return submission.user_id == user.id or is_teacher(clazz, user) or is_member(db, clazz.id, user.id)


@router.get("/submissions/{submission_id}/audio")
def submission_audio(submission_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	submission = get_or_404(db, HomeworkSubmission, submission_id, "Submission")
	if not _can_hear(db, submission, user):
		raise HTTPException(status_code=403, detail="Forbidden")
	if submission.audio_url:
		return {"success": True, "audio_url": submission.audio_url, "type": "url"}
	if submission.audio_data:
		encoded = base64.b64encode(submission.audio_data).decode("ascii")
		return {"success": True, "audio_url": f"data:audio/webm;base64,{encoded}", "type": "base64"}
	raise HTTPException(status_code=404, detail="No audio data found for this submission")


@router.post("/submissions/{submission_id}/assess")
async def assess_submission(submission_id: int, req: AssessRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	submission = get_or_404(db, HomeworkSubmission, submission_id, "Submission")
	hw = submission.homework
	if submission.user_id != user.id and not is_teacher(hw.clazz, user):
		raise HTTPException(status_code=403, detail="Forbidden")
	transcript = (req.transcribed_text or "").strip()
	if not transcript:
		raise HTTPException(status_code=400, detail="transcribed_text is required")
	if hw.type != "speaking" or not hw.speaking_text:
		raise HTTPException(status_code=400, detail="Reference text not found for this homework")
	assessment: PronunciationAssessment = await assess_speech(hw.speaking_text, transcript)
	submission.transcribed_text = transcript
	submission.assessment = assessment.model_dump_json()
	submission.score = int(round(assessment.overall_score))
	submission.last_activity_at = datetime.utcnow()
	db.commit()
	db.refresh(submission)
	logger.info("submission %s assessed, overall %.0f", submission.id, assessment.overall_score)
	return {"success": True, "assessment": assessment, "submission": submission_out(submission)}


# Teacher review: the class owner sees every student's attempts and manages the homework.

HOMEWORK_STATUSES = (HOMEWORK_ACTIVE, HOMEWORK_LOCKED)


@router.get("/{homework_id}/review")
def review_homework(homework_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	hw = _owned_homework(db, homework_id, user)
	if attempts.apply_lazy_lock(hw):
		db.commit()
	rows = (
		db.query(HomeworkSubmission)
		.filter(HomeworkSubmission.homework_id == hw.id)
		.order_by(HomeworkSubmission.created_at.desc(), HomeworkSubmission.id.desc())
		.all()
	)
	return {
		**homework_out(hw, []).model_dump(exclude={"submissions"}),
		"answer_text": hw.answer_text,
		"clazz": {"id": hw.clazz.id, "name": hw.clazz.name, "class_code": hw.clazz.class_code},
		"submissions": [{**submission_out(s).model_dump(), "user": _student(s.user)} for s in rows],
		"submission_count": len(rows),
	}


@router.put("/{homework_id}", response_model=HomeworkOut)
def update_homework(homework_id: int, req: UpdateHomeworkRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	hw = _owned_homework(db, homework_id, user)
	changes = req.model_dump(exclude_unset=True)
	if "title" in changes:
		changes["title"] = (changes["title"] or "").strip()
		if not changes["title"]:
			raise HTTPException(status_code=400, detail="Title is required")
	if changes.get("hide_mode") is not None and changes["hide_mode"] not in HIDE_MODES:
		raise HTTPException(status_code=400, detail=f"hide_mode must be one of {', '.join(HIDE_MODES)}")
	if changes.get("status") is not None and changes["status"] not in HOMEWORK_STATUSES:
		raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(HOMEWORK_STATUSES)}")
	if "deadline" in changes:
		if changes["deadline"] is None:
			raise HTTPException(status_code=400, detail="deadline cannot be empty")
		changes["deadline"] = _utc_naive(changes["deadline"])
	for field in ("hide_mode", "status"):
		if field in changes and changes[field] is None:
			del changes[field]
	speaking_text = changes.get("speaking_text", hw.speaking_text)
	if hw.type == "speaking" and not (speaking_text or "").strip():
		raise HTTPException(status_code=400, detail="speaking_text is required for speaking homework")
	for field, value in changes.items():
		setattr(hw, field, value)
	db.commit()
	db.refresh(hw)
	logger.info("homework %s updated: %s", hw.id, ", ".join(sorted(changes)) or "no changes")
	return homework_out(hw, [])


@router.delete("/{homework_id}")
def delete_homework(homework_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	hw = _owned_homework(db, homework_id, user)
	db.delete(hw)
	db.commit()
	logger.info("homework %s deleted", homework_id)
	return {"success": True}


@router.get("/{homework_id}/review/submissions/{submission_id}")
def review_submission(homework_id: int, submission_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	hw = _owned_homework(db, homework_id, user)
	submission = _homework_submission(db, hw, submission_id)
	return {
		**submission_out(submission).model_dump(),
		"user": _student(submission.user),
		"homework": {
			"id": hw.id,
			"title": hw.title,
			"type": hw.type,
			"speaking_text": hw.speaking_text,
			"answer_text": hw.answer_text,
			"deadline": hw.deadline,
			"status": hw.status,
		},
		"assessment": json.loads(submission.assessment) if submission.assessment else None,
	}


@router.delete("/{homework_id}/review/submissions/{submission_id}")
def delete_submission(homework_id: int, submission_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	hw = _owned_homework(db, homework_id, user)
	submission = _homework_submission(db, hw, submission_id)
	db.delete(submission)
	db.commit()
	logger.info("submission %s of homework %s deleted", submission_id, hw.id)
	return {"success": True}
