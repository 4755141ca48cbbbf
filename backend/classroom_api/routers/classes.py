from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..access import get_or_404
from ..db import get_db
from ..models import ClassMember, Clazz, User
from ..services.codes import generate_unique_code, normalize_code
from .auth import get_current_user, require_admin


router = APIRouter(prefix="/classes", tags=["classes"])


class CreateClassRequest(BaseModel):
	name: str
	description: Optional[str] = None


class JoinClassRequest(BaseModel):
	class_code: str


class ClassOut(BaseModel):
	id: int
	name: str
	description: Optional[str] = None
	class_code: str
	teacher_id: int
	member_count: int
	created_at: datetime


def _class_out(row: Clazz) -> ClassOut:
	return ClassOut(
		id=row.id,
		name=row.name,
		description=row.description,
		class_code=row.class_code,
		teacher_id=row.teacher_id,
		member_count=len(row.members),
		created_at=row.created_at,
	)


@router.post("", status_code=201, response_model=ClassOut)
def create_class(req: CreateClassRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
	name = (req.name or "").strip()
	if not name:
		raise HTTPException(status_code=400, detail="Class name is required")
	code = generate_unique_code(lambda c: db.query(Clazz.id).filter(Clazz.class_code == c).first() is not None)
	row = Clazz(name=name, description=req.description, class_code=code, teacher_id=user.id)
	db.add(row)
	db.commit()
	db.refresh(row)
	return _class_out(row)


@router.post("/join", status_code=201, response_model=ClassOut)
def join_class(req: JoinClassRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	code = normalize_code(req.class_code)
	if not code:
		raise HTTPException(status_code=400, detail="Class code is required")
	clazz = db.query(Clazz).filter(Clazz.class_code == code).first()
	if clazz is None:
		raise HTTPException(status_code=404, detail="Class not found")
	existing = db.query(ClassMember).filter(
		ClassMember.clazz_id == clazz.id,
		ClassMember.user_id == user.id,
	).first()
	if existing:
		raise HTTPException(status_code=400, detail="Already a member of this class")
	db.add(ClassMember(clazz_id=clazz.id, user_id=user.id))
	db.commit()
	db.refresh(clazz)
	return _class_out(clazz)


@router.get("/mine", response_model=List[ClassOut])
def my_classes(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	member_ids = select(ClassMember.clazz_id).where(ClassMember.user_id == user.id)
	rows = (
		db.query(Clazz)
		.filter(or_(Clazz.teacher_id == user.id, Clazz.id.in_(member_ids)))
		.order_by(Clazz.created_at.desc(), Clazz.id.desc())
		.all()
	)
	return [_class_out(r) for r in rows]


@router.delete("/{class_id}/leave")
def leave_class(class_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	get_or_404(db, Clazz, class_id, "Class")
	membership = db.query(ClassMember).filter(
		ClassMember.clazz_id == class_id,
		ClassMember.user_id == user.id,
	).first()
	if membership is None:
		raise HTTPException(status_code=404, detail="You are not a member of this class")
	db.delete(membership)
	db.commit()
	return {"ok": True}
