from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..gemini_client import GeminiClient


class VocabularyDetails(BaseModel):
	word: str
	language: str
	vietnamese_translation: str
	part_of_speech: Optional[str] = None
	ipa: Optional[str] = None
	pinyin: Optional[str] = None
	example: Optional[str] = None


def build_details_prompt(word: str, language: str) -> str:
	if language == "chinese":
		phonetics = '"pinyin": string (tone marks), "ipa": null'
	else:
		phonetics = '"ipa": string (British IPA between slashes), "pinyin": null'
	return (
		"You are a bilingual dictionary for Vietnamese learners.\n"
		f"Word ({language}): {word}\n\n"
		"Give the most common Vietnamese translation, the part of speech, "
		"the pronunciation and one short example sentence in the source language.\n"
		"Output STRICTLY JSON, no markdown, no commentary, with exactly these keys:\n"
		'{"vietnamese_translation": string, "part_of_speech": string, '
		f"{phonetics}, "
		'"example": string}'
	)


def parse_details(word: str, language: str, data: Dict[str, Any]) -> VocabularyDetails:
	translation = str(data.get("vietnamese_translation") or "").strip()
	if not translation:
		raise ValueError("model returned no translation")

	def _opt(key: str) -> Optional[str]:
		value = data.get(key)
		text = str(value).strip() if value is not None else ""
		return text or None

	return VocabularyDetails(
		word=word,
		language=language,
		vietnamese_translation=translation,
		part_of_speech=_opt("part_of_speech"),
		ipa=_opt("ipa") if language != "chinese" else None,
		pinyin=_opt("pinyin") if language == "chinese" else None,
		example=_opt("example"),
	)


async def generate_vocabulary_details(word: str, language: str = "english") -> VocabularyDetails:
	async with GeminiClient() as client:
		data = await client.generate_json(build_details_prompt(word, language))
	return parse_details(word, language, data)
