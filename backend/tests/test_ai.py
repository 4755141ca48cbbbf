import asyncio
import json

import httpx
import pytest

from classroom_api import ai_retry
from classroom_api.gemini_client import GeminiClient, LLMNotConfiguredError, extract_json_block
from classroom_api.services import speech_assessment
from classroom_api.services.vocabulary_ai import VocabularyDetails, parse_details
from classroom_api.settings import settings

from conftest import auth_headers


class FakeSleep:
	def __init__(self):
		self.delays = []

	async def __call__(self, delay):
		self.delays.append(delay)


def _status_error(code: int) -> httpx.HTTPStatusError:
	request = httpx.Request("POST", "https://example.test")
	return httpx.HTTPStatusError(f"{code} error", request=request, response=httpx.Response(code, request=request))


# ---------------------------------------------------------------------------
# retry_with_backoff
# ---------------------------------------------------------------------------

def test_retry_recovers_after_transient_failures():
	calls = []
	sleep = FakeSleep()

	async def flaky():
		calls.append(1)
		if len(calls) < 3:
			raise _status_error(503)
		return "ok"

	result = asyncio.run(ai_retry.retry_with_backoff(flaky, max_retries=3, initial_delay=1.0, max_delay=10.0, sleep=sleep))

	assert result == "ok"
	assert len(calls) == 3
	assert len(sleep.delays) == 2
	# Exponential base with up to 30% jitter on top
	assert 1.0 <= sleep.delays[0] <= 1.3
	assert 2.0 <= sleep.delays[1] <= 2.6


def test_retry_gives_up_after_max_retries():
	calls = []
	sleep = FakeSleep()

	async def always_busy():
		calls.append(1)
		raise RuntimeError("The model is overloaded")

	with pytest.raises(RuntimeError, match="overloaded"):
		asyncio.run(ai_retry.retry_with_backoff(always_busy, max_retries=2, initial_delay=0.5, sleep=sleep))
	assert len(calls) == 3
	assert len(sleep.delays) == 2


def test_retry_does_not_retry_client_errors():
	calls = []
	sleep = FakeSleep()

	async def bad_request():
		calls.append(1)
		raise _status_error(400)

	with pytest.raises(httpx.HTTPStatusError):
		asyncio.run(ai_retry.retry_with_backoff(bad_request, max_retries=3, sleep=sleep))
	assert len(calls) == 1
	assert sleep.delays == []


def test_backoff_delay_is_capped():
	assert ai_retry.backoff_delay(0, 1.0, 10.0) == 1.0
	assert ai_retry.backoff_delay(3, 1.0, 10.0) == 8.0
	assert ai_retry.backoff_delay(6, 1.0, 10.0) == 10.0


@pytest.mark.parametrize("code,expected", [(429, True), (500, True), (503, True), (504, True), (400, False), (404, False)])
def test_is_retryable_by_status(code, expected):
	assert ai_retry.is_retryable(_status_error(code)) is expected


def test_is_retryable_by_message_and_transport_errors():
	assert ai_retry.is_retryable(RuntimeError("Service Unavailable, try again later"))
	assert ai_retry.is_retryable(httpx.ConnectTimeout("timed out"))
	assert not ai_retry.is_retryable(ValueError("bad json"))


# ---------------------------------------------------------------------------
# Gemini client
# ---------------------------------------------------------------------------

def _gemini_body(text: str) -> dict:
	return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_client_requires_a_key():
	with pytest.raises(LLMNotConfiguredError):
		GeminiClient()


def test_client_retries_overloaded_gemini(monkeypatch):
	monkeypatch.setattr(settings, "ai_initial_delay_seconds", 0.0)
	seen = []

	def handler(request: httpx.Request) -> httpx.Response:
		seen.append(request)
		if len(seen) == 1:
			return httpx.Response(503, json={"error": {"message": "overloaded"}})
		return httpx.Response(200, json=_gemini_body('{"vietnamese_translation": "quả táo"}'))

	async def run():
		async with GeminiClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
			return await client.generate_json("prompt")

	data = asyncio.run(run())

	assert data == {"vietnamese_translation": "quả táo"}
	assert len(seen) == 2
	assert seen[0].url.params["key"] == "k"
	payload = json.loads(seen[0].content)
	assert payload["generationConfig"]["responseMimeType"] == "application/json"


def test_client_falls_back_to_openrouter(monkeypatch):
	monkeypatch.setattr(settings, "ai_initial_delay_seconds", 0.0)
	monkeypatch.setattr(settings, "ai_max_retries", 1)
	monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
	hosts = []

	def handler(request: httpx.Request) -> httpx.Response:
		hosts.append(request.url.host)
		if request.url.host == "openrouter.ai":
			assert request.headers["Authorization"] == "Bearer or-key"
			return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})
		return httpx.Response(503)

	async def run():
		async with GeminiClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
			return await client.generate("prompt")

	assert asyncio.run(run()) == "hello"
	assert hosts == ["generativelanguage.googleapis.com", "generativelanguage.googleapis.com", "openrouter.ai"]


def test_extract_json_block_handles_fenced_output():
	assert extract_json_block('{"a": 1}') == {"a": 1}
	assert extract_json_block('Sure!\n```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}
	with pytest.raises(ValueError):
		extract_json_block("no json here")
	with pytest.raises(ValueError):
		extract_json_block("[1, 2]")


# ---------------------------------------------------------------------------
# Vocabulary details and speech assessment
# ---------------------------------------------------------------------------

def test_parse_details_keeps_phonetics_for_language():
	english = parse_details("apple", "english", {"vietnamese_translation": " quả táo ", "ipa": "/ˈæp.əl/", "pinyin": "píng"})
	assert english.vietnamese_translation == "quả táo"
	assert english.ipa == "/ˈæp.əl/"
	assert english.pinyin is None

	chinese = parse_details("苹果", "chinese", {"vietnamese_translation": "quả táo", "ipa": "x", "pinyin": "píngguǒ"})
	assert chinese.pinyin == "píngguǒ"
	assert chinese.ipa is None

	with pytest.raises(ValueError):
		parse_details("apple", "english", {"part_of_speech": "noun"})


def test_parse_assessment_clamps_scores():
	result = speech_assessment.parse_assessment({
		"accuracy_score": 120,
		"fluency_score": -4,
		"completeness_score": "90",
		"prosody_score": "n/a",
		"overall_score": 77,
		"words": [{"word": "hi", "accuracy_score": 88, "error_type": "None"}, {"accuracy_score": 10}],
		"feedback": "  Good job. ",
	})

	assert result.accuracy_score == 100
	assert result.fluency_score == 0
	assert result.completeness_score == 90
	assert result.prosody_score == 50
	assert [w.word for w in result.words] == ["hi"]
	assert result.feedback == "Good job."
	assert result.fallback is False


def test_assess_speech_falls_back_on_bad_model_output(monkeypatch):
	async def broken_json(self, prompt, **kwargs):
		raise ValueError("Failed to parse JSON from model output")

	monkeypatch.setattr(settings, "gemini_api_key", "k")
	monkeypatch.setattr(GeminiClient, "generate_json", broken_json)

	result = asyncio.run(speech_assessment.assess_speech("hello world", "hello word"))

	assert result.fallback is True
	assert result.overall_score == 50
	assert [w.word for w in result.words] == ["hello", "word"]


def test_vocabulary_details_endpoint(client, factory, monkeypatch):
	user = factory.user()

	async def fake_details(word, language):
		return VocabularyDetails(word=word, language=language, vietnamese_translation="quyển sách", part_of_speech="noun")

	monkeypatch.setattr("classroom_api.routers.ai.generate_vocabulary_details", fake_details)

	resp = client.post("/ai/vocabulary-details", json={"word": " book ", "language": "English"}, headers=auth_headers(user))

	assert resp.status_code == 200
	assert resp.json()["word"] == "book"
	assert resp.json()["language"] == "english"
	assert resp.json()["vietnamese_translation"] == "quyển sách"


def test_vocabulary_details_unconfigured_and_bad_output(client, factory, monkeypatch):
	user = factory.user()

	unconfigured = client.post("/ai/vocabulary-details", json={"word": "book"}, headers=auth_headers(user))
	assert unconfigured.status_code == 503
	assert unconfigured.json() == {"error": "AI service is not configured"}

	async def unusable(word, language):
		raise ValueError("model returned no translation")

	monkeypatch.setattr("classroom_api.routers.ai.generate_vocabulary_details", unusable)
	bad = client.post("/ai/vocabulary-details", json={"word": "book"}, headers=auth_headers(user))
	assert bad.status_code == 502
	assert bad.json()["error"].startswith("LLM parse/format error")


def test_health_reports_llm_configuration(client, monkeypatch):
	assert client.get("/health").json() == {"status": "ok", "llm_configured": False}
	monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
	assert client.get("/health").json()["llm_configured"] is True
