from __future__ import annotations
from typing import Type, TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session

from .models import ClassMember, Clazz, User


M = TypeVar("M")


def get_or_404(db: Session, model: Type[M], row_id: int, label: str) -> M:
	row = db.get(model, row_id)
	if row is None:
		raise HTTPException(status_code=404, detail=f"{label} not found")
	return row


def is_member(db: Session, clazz_id: int, user_id: int) -> bool:
	return db.query(ClassMember.id).filter(
		ClassMember.clazz_id == clazz_id,
		ClassMember.user_id == user_id,
	).first() is not None


def is_teacher(clazz: Clazz, user: User) -> bool:
	return clazz.teacher_id == user.id


def ensure_member(db: Session, clazz: Clazz, user: User, *, allow_teacher: bool = False) -> None:
	if allow_teacher and is_teacher(clazz, user):
		return
	if not is_member(db, clazz.id, user.id):
		raise HTTPException(status_code=403, detail="You are not a member of this class")


def ensure_teacher(clazz: Clazz, user: User) -> None:
	if not is_teacher(clazz, user):
		raise HTTPException(status_code=403, detail="Forbidden")
