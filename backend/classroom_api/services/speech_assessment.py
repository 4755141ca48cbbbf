"""
Pronunciation assessment for speaking homework.

The student's recording is transcribed on the client; here the transcript is
compared with the homework's reference text by the LLM, which scores accuracy,
fluency, completeness and prosody on a 0-100 scale. When the model is
unavailable or returns something unusable, a neutral 50-point assessment is
returned so the submission can still be reviewed by the teacher.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..gemini_client import GeminiClient, LLMNotConfiguredError


logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0


class WordScore(BaseModel):
	word: str
	accuracy_score: float = Field(ge=0, le=100)
	error_type: Optional[str] = None


class PronunciationAssessment(BaseModel):
	accuracy_score: float = Field(ge=0, le=100)
	fluency_score: float = Field(ge=0, le=100)
	completeness_score: float = Field(ge=0, le=100)
	prosody_score: float = Field(ge=0, le=100)
	overall_score: float = Field(ge=0, le=100)
	words: List[WordScore] = Field(default_factory=list)
	feedback: Optional[str] = None
	fallback: bool = False


def build_assessment_prompt(reference_text: str, transcribed_text: str) -> str:
	return (
		"You are an expert English pronunciation evaluator. Respond with JSON only.\n\n"
		f'Reference: "{reference_text}"\n'
		f'Transcribed: "{transcribed_text}"\n\n'
		"Return a JSON object with keys accuracy_score, fluency_score, completeness_score, "
		"prosody_score, overall_score (all numbers 0-100), words (array of objects with word, "
		"accuracy_score, error_type where error_type is one of None, Mispronunciation, Omission, "
		"Insertion) and feedback (one or two short sentences)."
	)


def neutral_assessment(transcribed_text: str) -> PronunciationAssessment:
	return PronunciationAssessment(
		accuracy_score=NEUTRAL_SCORE,
		fluency_score=NEUTRAL_SCORE,
		completeness_score=NEUTRAL_SCORE,
		prosody_score=NEUTRAL_SCORE,
		overall_score=NEUTRAL_SCORE,
		words=[WordScore(word=w, accuracy_score=NEUTRAL_SCORE, error_type="None") for w in transcribed_text.split()],
		feedback="Automatic assessment is unavailable; your teacher will review this recording.",
		fallback=True,
	)


def _clamp(value: Any) -> float:
	try:
		number = float(value)
	except (TypeError, ValueError):
		return NEUTRAL_SCORE
	return max(0.0, min(100.0, number))


def parse_assessment(data: Dict[str, Any]) -> PronunciationAssessment:
	words = []
	for item in data.get("words") or []:
		if not isinstance(item, dict) or not item.get("word"):
			continue
		words.append(WordScore(
			word=str(item["word"]),
			accuracy_score=_clamp(item.get("accuracy_score")),
			error_type=(str(item["error_type"]) if item.get("error_type") is not None else None),
		))
	return PronunciationAssessment(
		accuracy_score=_clamp(data.get("accuracy_score")),
		fluency_score=_clamp(data.get("fluency_score")),
		completeness_score=_clamp(data.get("completeness_score")),
		prosody_score=_clamp(data.get("prosody_score")),
		overall_score=_clamp(data.get("overall_score")),
		words=words,
		feedback=(str(data.get("feedback")).strip() or None) if data.get("feedback") else None,
	)


async def assess_speech(reference_text: str, transcribed_text: str) -> PronunciationAssessment:
	try:
		async with GeminiClient() as client:
			data = await client.generate_json(build_assessment_prompt(reference_text, transcribed_text))
		return parse_assessment(data)
	except LLMNotConfiguredError:
		logger.warning("speech assessment requested but no LLM is configured")
	except (ValueError, ValidationError) as exc:
		logger.warning("speech assessment returned unusable output: %s", exc)
	except Exception:
		logger.exception("speech assessment failed")
	return neutral_assessment(transcribed_text)
