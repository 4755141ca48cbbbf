from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..access import get_or_404
from ..db import get_db
from ..models import Folder, Quiz, User, Vocabulary
from .auth import get_current_user


router = APIRouter(prefix="/folders", tags=["folders"])

logger = logging.getLogger(__name__)

LANGUAGES = ("english", "chinese")


class CreateFolderRequest(BaseModel):
	name: str


class FolderOut(BaseModel):
	id: int
	name: str
	word_count: int
	created_at: datetime


class VocabularyIn(BaseModel):
	word: str
	vietnamese_translation: str
	language: str = "english"
	part_of_speech: Optional[str] = None
	ipa: Optional[str] = None
	pinyin: Optional[str] = None
	audio_src: Optional[str] = None


class VocabularyOut(BaseModel):
	id: int
	word: str
	language: str
	vietnamese_translation: str
	folder: str
	part_of_speech: Optional[str] = None
	ipa: Optional[str] = None
	pinyin: Optional[str] = None
	audio_src: Optional[str] = None
	created_at: datetime


def vocabulary_out(row: Vocabulary, folder_name: str) -> VocabularyOut:
	return VocabularyOut(
		id=row.id,
		word=row.word,
		language=row.language,
		vietnamese_translation=row.vietnamese_translation,
		folder=folder_name,
		part_of_speech=row.part_of_speech,
		ipa=row.ipa,
		pinyin=row.pinyin,
		audio_src=row.audio_src,
		created_at=row.created_at,
	)


def _owned_folder(db: Session, folder_id: int, user: User) -> Folder:
	folder = get_or_404(db, Folder, folder_id, "Folder")
	if folder.user_id != user.id:
		raise HTTPException(status_code=403, detail="Forbidden")
	return folder


@router.post("", status_code=201, response_model=FolderOut)
def create_folder(req: CreateFolderRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	name = (req.name or "").strip()
	if not name:
		raise HTTPException(status_code=400, detail="Folder name is required")
	if db.query(Folder.id).filter(Folder.user_id == user.id, Folder.name == name).first():
		raise HTTPException(status_code=409, detail="Folder already exists")
	row = Folder(name=name, user_id=user.id)
	db.add(row)
	db.commit()
	db.refresh(row)
	return FolderOut(id=row.id, name=row.name, word_count=0, created_at=row.created_at)


@router.get("", response_model=List[FolderOut])
def list_folders(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(Folder).filter(Folder.user_id == user.id).order_by(Folder.name.asc()).all()
	return [FolderOut(id=r.id, name=r.name, word_count=len(r.words), created_at=r.created_at) for r in rows]


@router.post("/{folder_id}/vocabulary", status_code=201, response_model=VocabularyOut)
def add_vocabulary(folder_id: int, req: VocabularyIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	word = (req.word or "").strip()
	translation = (req.vietnamese_translation or "").strip()
	if not word or not translation:
		raise HTTPException(status_code=400, detail="word and vietnamese_translation are required")
	language = (req.language or "english").strip().lower()
	if language not in LANGUAGES:
		raise HTTPException(status_code=400, detail=f"language must be one of {', '.join(LANGUAGES)}")
	row = Vocabulary(
		user_id=user.id,
		folder_id=folder.id,
		word=word,
		language=language,
		vietnamese_translation=translation,
		part_of_speech=req.part_of_speech,
		ipa=req.ipa,
		pinyin=req.pinyin,
		audio_src=req.audio_src,
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	return vocabulary_out(row, folder.name)


@router.get("/{folder_id}/vocabulary", response_model=List[VocabularyOut])
def list_vocabulary(folder_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	return [vocabulary_out(v, folder.name) for v in folder.words]


class VocabularyUpdate(BaseModel):
	word: Optional[str] = None
	vietnamese_translation: Optional[str] = None
	language: Optional[str] = None
	part_of_speech: Optional[str] = None
	ipa: Optional[str] = None
	pinyin: Optional[str] = None
	audio_src: Optional[str] = None
	# Move the word into another folder of the same owner
	folder_id: Optional[int] = None


def _folder_word(db: Session, folder: Folder, vocabulary_id: int) -> Vocabulary:
	row = db.get(Vocabulary, vocabulary_id)
	if row is None or row.folder_id != folder.id:
		raise HTTPException(status_code=404, detail="Vocabulary not found")
	return row


@router.put("/{folder_id}", response_model=FolderOut)
def rename_folder(folder_id: int, req: CreateFolderRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	name = (req.name or "").strip()
	if not name:
		raise HTTPException(status_code=400, detail="Folder name is required")
	clash = db.query(Folder.id).filter(Folder.user_id == user.id, Folder.name == name, Folder.id != folder.id).first()
	if clash:
		raise HTTPException(status_code=409, detail="Folder already exists")
	folder.name = name
	db.commit()
	db.refresh(folder)
	return FolderOut(id=folder.id, name=folder.name, word_count=len(folder.words), created_at=folder.created_at)


@router.delete("/{folder_id}")
def delete_folder(folder_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	# Quizzes read their words from the folder
	if db.query(Quiz.id).filter(Quiz.folder_id == folder.id).first():
		raise HTTPException(status_code=409, detail="Folder is used by a quiz")
	removed = len(folder.words)
	db.delete(folder)
	db.commit()
	logger.info("folder %s deleted with %s words", folder_id, removed)
	return {"success": True, "deleted_words": removed}


@router.put("/{folder_id}/vocabulary/{vocabulary_id}", response_model=VocabularyOut)
def update_vocabulary(folder_id: int, vocabulary_id: int, req: VocabularyUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	row = _folder_word(db, folder, vocabulary_id)
	changes = req.model_dump(exclude_unset=True)
	for field in ("word", "vietnamese_translation"):
		if field in changes:
			changes[field] = (changes[field] or "").strip()
			if not changes[field]:
				raise HTTPException(status_code=400, detail="word and vietnamese_translation are required")
	if "language" in changes:
		changes["language"] = (changes["language"] or "english").strip().lower()
		if changes["language"] not in LANGUAGES:
			raise HTTPException(status_code=400, detail=f"language must be one of {', '.join(LANGUAGES)}")
	target = folder
	if changes.get("folder_id") is not None and changes["folder_id"] != folder.id:
		target = _owned_folder(db, changes["folder_id"], user)
	changes.pop("folder_id", None)
	for field, value in changes.items():
		setattr(row, field, value)
	row.folder_id = target.id
	db.commit()
	db.refresh(row)
	return vocabulary_out(row, target.name)


@router.delete("/{folder_id}/vocabulary/{vocabulary_id}")
def delete_vocabulary(folder_id: int, vocabulary_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	folder = _owned_folder(db, folder_id, user)
	row = _folder_word(db, folder, vocabulary_id)
	db.delete(row)
	db.commit()
	return {"success": True}
