from __future__ import annotations
import json
import re
import httpx
from typing import Any, Dict, Optional
from .ai_retry import retry_with_backoff
from .settings import settings


class LLMNotConfiguredError(RuntimeError):
	pass


def extract_json_block(text: str) -> Dict[str, Any]:
	try:
		data = json.loads(text)
		if isinstance(data, dict):
			return data
	except Exception:
		pass
	# Models sometimes wrap the object in prose or a ```json fence
	match = re.search(r"\{[\s\S]*\}", text or "")
	if match:
		try:
			data = json.loads(match.group(0))
			if isinstance(data, dict):
				return data
		except Exception:
			pass
	raise ValueError("Failed to parse JSON from model output")


def llm_configured() -> bool:
	return bool(settings.gemini_api_key or settings.openrouter_api_key)


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		self._openrouter_api_key = settings.openrouter_api_key
		self._fallback_enabled = bool(self._openrouter_api_key)
		if not self.api_key and not self._fallback_enabled:
			raise LLMNotConfiguredError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=30, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=30, transport=transport)

	async def __aenter__(self) -> "GeminiClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def generate(self, prompt: str, *, json_mode: bool = False, temperature: Optional[float] = None) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		generation_config: Dict[str, Any] = {}
		if json_mode:
			generation_config["responseMimeType"] = "application/json"
		if temperature is not None:
			generation_config["temperature"] = temperature
		if generation_config:
			payload["generationConfig"] = generation_config
		if not self.api_key:
			return await self._fallback_generate(prompt, None)
		try:
			return await retry_with_backoff(lambda: self._post_payload(payload))
		except Exception as primary_error:
			if not self._fallback_enabled:
				raise
			return await self._fallback_generate(prompt, primary_error)

	async def generate_json(self, prompt: str, *, temperature: Optional[float] = 0.3) -> Dict[str, Any]:
		raw = await self.generate(prompt, json_mode=True, temperature=temperature)
		return extract_json_block(raw)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except Exception:
			raise RuntimeError(f"Unexpected Gemini response: {r.text}")

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}

		async def _call() -> str:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]

		try:
			return await retry_with_backoff(_call)
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err
