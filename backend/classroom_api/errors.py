from __future__ import annotations
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


def _first_validation_message(exc: RequestValidationError) -> str:
	errors = exc.errors()
	if not errors:
		return "Invalid request"
	first = errors[0]
	location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
	message = first.get("msg", "Invalid value")
	return f"{location}: {message}" if location else message


def install_error_handlers(app: FastAPI) -> None:
	"""Render every error as ``{"error": message}``."""

	@app.exception_handler(StarletteHTTPException)
	async def _http_error(request: Request, exc: StarletteHTTPException):
		return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

	@app.exception_handler(RequestValidationError)
	async def _validation_error(request: Request, exc: RequestValidationError):
		return JSONResponse({"error": _first_validation_message(exc)}, status_code=400)

	@app.exception_handler(Exception)
	async def _unexpected_error(request: Request, exc: Exception):
		logger.exception("unhandled error on %s %s", request.method, request.url.path)
		return JSONResponse({"error": "Internal server error"}, status_code=500)
