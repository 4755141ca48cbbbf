from __future__ import annotations
from datetime import datetime
from sqlalchemy import (
	Boolean,
	Column,
	DateTime,
	ForeignKey,
	Integer,
	LargeBinary,
	String,
	Text,
	UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .db import Base


QUIZ_PENDING = "pending"
QUIZ_ACTIVE = "active"
QUIZ_ENDED = "ended"

RESULT_IN_PROGRESS = "in_progress"
RESULT_SUBMITTED = "submitted"

HOMEWORK_ACTIVE = "active"
HOMEWORK_LOCKED = "locked"

SUBMISSION_IN_PROGRESS = "in_progress"
SUBMISSION_SUBMITTED = "submitted"
SUBMISSION_GRADED = "graded"

ROLE_ADMIN = "admin"
ROLE_USER = "user"


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, autoincrement=True)
	email = Column(String(256), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	name = Column(String(128), nullable=True)
	role = Column(String(16), default=ROLE_USER, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = Column(DateTime, nullable=True)


class Clazz(Base):
	__tablename__ = "classes"
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(128), nullable=False)
	description = Column(Text, nullable=True)
	# Short code students type in to join
	class_code = Column(String(16), unique=True, index=True, nullable=False)
	teacher_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	teacher = relationship("User")
	members = relationship("ClassMember", back_populates="clazz", cascade="all, delete-orphan")


class ClassMember(Base):
	__tablename__ = "class_members"
	__table_args__ = (UniqueConstraint("clazz_id", "user_id", name="uq_class_member"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	clazz_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	clazz = relationship("Clazz", back_populates="members")
	user = relationship("User")


class Folder(Base):
	__tablename__ = "folders"
	__table_args__ = (UniqueConstraint("user_id", "name", name="uq_folder_owner_name"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(128), nullable=False)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	words = relationship("Vocabulary", back_populates="folder", cascade="all, delete-orphan", order_by="Vocabulary.id")


class Vocabulary(Base):
	__tablename__ = "vocabulary"
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=False, index=True)
	word = Column(String(256), nullable=False)
	language = Column(String(16), default="english", nullable=False)
	vietnamese_translation = Column(Text, nullable=False)
	part_of_speech = Column(String(64), nullable=True)
	ipa = Column(String(256), nullable=True)
	pinyin = Column(String(256), nullable=True)
	audio_src = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	folder = relationship("Folder", back_populates="words")


class Quiz(Base):
	__tablename__ = "quizzes"
	id = Column(Integer, primary_key=True, autoincrement=True)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	quiz_code = Column(String(16), unique=True, index=True, nullable=False)
	status = Column(String(16), default=QUIZ_PENDING, nullable=False)
	is_paused = Column(Boolean, default=False, nullable=False)
	# en_vi, vi_en or random
	direction = Column(String(16), default="en_vi", nullable=False)
	time_per_question = Column(Integer, default=0, nullable=False)
	clazz_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
	folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	ended_at = Column(DateTime, nullable=True)

	clazz = relationship("Clazz")
	folder = relationship("Folder")
	results = relationship("QuizResult", back_populates="quiz", cascade="all, delete-orphan")


class QuizResult(Base):
	__tablename__ = "quiz_results"
	id = Column(Integer, primary_key=True, autoincrement=True)
	quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	score = Column(Integer, default=0, nullable=False)
	max_score = Column(Integer, default=0, nullable=False)
	status = Column(String(16), default=RESULT_IN_PROGRESS, nullable=False)
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	ended_at = Column(DateTime, nullable=True)

	quiz = relationship("Quiz", back_populates="results")
	user = relationship("User")
	answers = relationship(
		"QuizAnswerDetail",
		back_populates="result",
		cascade="all, delete-orphan",
		order_by="QuizAnswerDetail.id",
	)


class QuizAnswerDetail(Base):
	__tablename__ = "quiz_answer_details"
	id = Column(Integer, primary_key=True, autoincrement=True)
	result_id = Column(Integer, ForeignKey("quiz_results.id", ondelete="CASCADE"), nullable=False, index=True)
	vocabulary_id = Column(Integer, ForeignKey("vocabulary.id", ondelete="SET NULL"), nullable=True)
	question_text = Column(Text, nullable=False)
	question_type = Column(String(64), nullable=False)
	selected_answer = Column(Text, nullable=True)
	correct_answer = Column(Text, nullable=False)
	is_correct = Column(Boolean, default=False, nullable=False)
	answered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	result = relationship("QuizResult", back_populates="answers")


class Homework(Base):
	__tablename__ = "homework"
	id = Column(Integer, primary_key=True, autoincrement=True)
	clazz_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	# listening, speaking, reading, writing
	type = Column(String(32), default="listening", nullable=False)
	deadline = Column(DateTime, nullable=False)
	status = Column(String(16), default=HOMEWORK_ACTIVE, nullable=False)
	prompt_text = Column(Text, nullable=True)
	answer_text = Column(Text, nullable=True)  # answer key, never sent to students
	speaking_text = Column(Text, nullable=True)
	hide_mode = Column(String(16), default="all", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	clazz = relationship("Clazz")
	submissions = relationship("HomeworkSubmission", back_populates="homework", cascade="all, delete-orphan")


class HomeworkSubmission(Base):
	__tablename__ = "homework_submissions"
	__table_args__ = (
		UniqueConstraint("homework_id", "user_id", "attempt_number", name="uq_submission_attempt"),
	)
	id = Column(Integer, primary_key=True, autoincrement=True)
	homework_id = Column(Integer, ForeignKey("homework.id", ondelete="CASCADE"), nullable=False, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	attempt_number = Column(Integer, default=1, nullable=False)
	answer = Column(Text, nullable=True)
	transcribed_text = Column(Text, nullable=True)
	audio_url = Column(Text, nullable=True)
	audio_data = Column(LargeBinary, nullable=True)
	score = Column(Integer, nullable=True)
	assessment = Column(Text, nullable=True)  # JSON string snapshot
	status = Column(String(16), default=SUBMISSION_IN_PROGRESS, nullable=False)
	time_spent_seconds = Column(Integer, default=0, nullable=False)
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	submitted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	homework = relationship("Homework", back_populates="submissions")
	user = relationship("User")
