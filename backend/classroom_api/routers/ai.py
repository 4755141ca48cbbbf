from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
import logging

from ..gemini_client import LLMNotConfiguredError
from ..models import User
from ..services.vocabulary_ai import VocabularyDetails, generate_vocabulary_details
from .auth import get_current_user

router = APIRouter(prefix="/ai", tags=["ai"])

logger = logging.getLogger(__name__)


class VocabularyDetailsRequest(BaseModel):
	word: str
	language: str = "english"


@router.post("/vocabulary-details", response_model=VocabularyDetails)
async def vocabulary_details(req: VocabularyDetailsRequest, user: User = Depends(get_current_user)):
	word = (req.word or "").strip()
	if not word:
		raise HTTPException(status_code=400, detail="word is required")
	language = (req.language or "english").strip().lower()
	try:
		return await generate_vocabulary_details(word, language)
	except LLMNotConfiguredError:
		raise HTTPException(status_code=503, detail="AI service is not configured")
	except ValueError as e:
		raise HTTPException(status_code=502, detail=f"LLM parse/format error: {e}")
	except Exception as e:
		logger.warning("vocabulary details for %r failed: %s", word, e)
		raise HTTPException(status_code=502, detail="AI service unavailable")
