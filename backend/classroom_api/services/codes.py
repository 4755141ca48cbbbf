"""Join codes for classes and quizzes."""
from __future__ import annotations

import secrets
from typing import Callable

# No 0/O, 1/I/L: codes are read aloud and typed by students
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_ATTEMPTS = 20


def random_code(length: int = CODE_LENGTH) -> str:
	return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_unique_code(is_taken: Callable[[str], bool], length: int = CODE_LENGTH) -> str:
	for _ in range(MAX_ATTEMPTS):
		code = random_code(length)
		if not is_taken(code):
			return code
	raise RuntimeError("Could not allocate a unique join code")


def normalize_code(raw: object) -> str:
	return str(raw or "").strip().upper()
