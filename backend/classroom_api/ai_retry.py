from __future__ import annotations
import asyncio
import logging
import random
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

import httpx

from .settings import settings


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
_RETRYABLE_MESSAGES = (
	"503",
	"service unavailable",
	"overloaded",
	"try again later",
	"429",
	"too many requests",
)


def _status_of(error: BaseException) -> Optional[int]:
	if isinstance(error, httpx.HTTPStatusError):
		return error.response.status_code
	status = getattr(error, "status_code", None) or getattr(error, "status", None)
	return status if isinstance(status, int) else None


def is_retryable(error: BaseException, status_codes: Iterable[int] = RETRYABLE_STATUS_CODES) -> bool:
	status = _status_of(error)
	if status is not None and status in tuple(status_codes):
		return True
	if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
		return True
	message = str(error).lower()
	return any(marker in message for marker in _RETRYABLE_MESSAGES)


def backoff_delay(attempt: int, initial: float, maximum: float, multiplier: float = 2.0) -> float:
	return min(initial * (multiplier ** attempt), maximum)


async def retry_with_backoff(
	fn: Callable[[], Awaitable[T]],
	*,
	max_retries: Optional[int] = None,
	initial_delay: Optional[float] = None,
	max_delay: Optional[float] = None,
	multiplier: float = 2.0,
	status_codes: Iterable[int] = RETRYABLE_STATUS_CODES,
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
	"""Await ``fn()``, retrying transient upstream failures with exponential backoff.

	Non-retryable errors propagate immediately; the last error is re-raised once
	``max_retries`` extra attempts have been spent. Each delay gets 0-30% jitter.
	"""
	retries = settings.ai_max_retries if max_retries is None else max_retries
	initial = settings.ai_initial_delay_seconds if initial_delay is None else initial_delay
	ceiling = settings.ai_max_delay_seconds if max_delay is None else max_delay
	codes = tuple(status_codes)
	attempt = 0
	while True:
		try:
			return await fn()
		except Exception as exc:
			if attempt >= retries or not is_retryable(exc, codes):
				raise
			delay = backoff_delay(attempt, initial, ceiling, multiplier)
			delay += random.random() * 0.3 * delay
			logger.warning(
				"AI call failed (attempt %s/%s): %s. Retrying in %.2fs",
				attempt + 1,
				retries + 1,
				exc,
				delay,
			)
			await sleep(delay)
			attempt += 1
