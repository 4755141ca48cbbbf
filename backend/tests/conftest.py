from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from classroom_api.db import Base, get_db
from classroom_api.main import app
from classroom_api.models import (
	ClassMember,
	Clazz,
	Folder,
	Homework,
	Quiz,
	QuizResult,
	User,
	Vocabulary,
	ROLE_ADMIN,
	ROLE_USER,
)
from classroom_api.routers.auth import token_for
from classroom_api.settings import settings


@pytest.fixture(autouse=True)
def no_llm(monkeypatch):
	# Tests never reach a real model unless they install their own fake
	monkeypatch.setattr(settings, "gemini_api_key", None)
	monkeypatch.setattr(settings, "openrouter_api_key", None)


@pytest.fixture
def engine():
	eng = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
		future=True,
	)

	@event.listens_for(eng, "connect")
	def _enforce_foreign_keys(dbapi_connection, connection_record):
		# Match Postgres, which always enforces foreign keys
		cursor = dbapi_connection.cursor()
		cursor.execute("PRAGMA foreign_keys=ON")
		cursor.close()

	Base.metadata.create_all(bind=eng)
	yield eng
	Base.metadata.drop_all(bind=eng)
	eng.dispose()


@pytest.fixture
def db(engine):
	Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True, expire_on_commit=True)
	session = Session()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def client(engine):
	Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

	def _override_get_db():
		session = Session()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = _override_get_db
	try:
		yield TestClient(app)
	finally:
		app.dependency_overrides.pop(get_db, None)


def auth_headers(user: User) -> dict:
	return {"Authorization": f"Bearer {token_for(user)}"}


class Factory:
	def __init__(self, db):
		self.db = db
		self._n = 0

	def _next(self) -> int:
		self._n += 1
		return self._n

	def user(self, role: str = ROLE_USER, name: str | None = None) -> User:
		n = self._next()
		row = User(email=f"user{n}@example.com", password_hash="unused", name=name, role=role)
		self.db.add(row)
		self.db.commit()
		return row

	def teacher(self) -> User:
		return self.user(role=ROLE_ADMIN, name="Teacher")

	def clazz(self, teacher: User, members=()) -> Clazz:
		n = self._next()
		row = Clazz(name=f"Class {n}", class_code=f"CLS{n:03d}", teacher_id=teacher.id)
		self.db.add(row)
		self.db.flush()
		for m in members:
			self.db.add(ClassMember(clazz_id=row.id, user_id=m.id))
		self.db.commit()
		return row

	def folder(self, owner: User, words=("apple", "book", "cat")) -> Folder:
		n = self._next()
		row = Folder(name=f"Folder {n}", user_id=owner.id)
		self.db.add(row)
		self.db.flush()
		for w in words:
			self.db.add(Vocabulary(user_id=owner.id, folder_id=row.id, word=w, vietnamese_translation=f"vi-{w}"))
		self.db.commit()
		return row

	def quiz(self, clazz: Clazz, folder: Folder, status: str = "pending", is_paused: bool = False) -> Quiz:
		n = self._next()
		row = Quiz(
			title=f"Quiz {n}",
			quiz_code=f"QZ{n:04d}",
			status=status,
			is_paused=is_paused,
			clazz_id=clazz.id,
			folder_id=folder.id,
		)
		self.db.add(row)
		self.db.commit()
		return row

	def result(self, quiz: Quiz, user: User, **fields) -> QuizResult:
		row = QuizResult(quiz_id=quiz.id, user_id=user.id, max_score=3, **fields)
		self.db.add(row)
		self.db.commit()
		return row

	def homework(self, clazz: Clazz, deadline: datetime | None = None, **fields) -> Homework:
		n = self._next()
		row = Homework(
			clazz_id=clazz.id,
			title=f"Homework {n}",
			deadline=deadline or datetime.utcnow() + timedelta(days=1),
			**fields,
		)
		self.db.add(row)
		self.db.commit()
		return row


@pytest.fixture
def factory(db):
	return Factory(db)
