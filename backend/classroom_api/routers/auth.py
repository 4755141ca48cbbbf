from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Request, Response
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
import logging

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import User, ROLE_ADMIN, ROLE_USER

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error is off so the cookie can be tried when no Authorization header is sent
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class UserOut(BaseModel):
	id: int
	email: str
	name: Optional[str] = None
	role: str

	@classmethod
	def from_row(cls, row: User) -> "UserOut":
		return cls(id=row.id, email=row.email, name=row.name, role=row.role)


class AuthResult(BaseModel):
	user: UserOut
	token: str


class RegisterRequest(BaseModel):
	email: str
	password: str
	name: Optional[str] = None


class LoginRequest(BaseModel):
	email: str
	password: str


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	row = db.query(User).filter(User.email == email.strip().lower()).first()
	if row and verify_password(password, row.password_hash):
		return row
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	"""Return a safe JWT expiry timestamp.

	Uses the configured token lifetime when no explicit delta is given and
	caps the result at ``datetime.max`` instead of overflowing.
	"""
	delta = expires_delta
	if delta is None:
		minutes = getattr(settings, "access_token_expire_minutes", None)
		if isinstance(minutes, int) and minutes > 0:
			delta = timedelta(minutes=minutes)
		else:
			delta = timedelta(days=7)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	expire = _resolve_expiry(expires_delta)
	to_encode.update({"exp": expire})
	encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
	return encoded_jwt


def token_for(user: User) -> str:
	return create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})


def _set_auth_cookie(response: Response, token: str) -> None:
	response.set_cookie(
		key=settings.auth_cookie_name,
		value=token,
		httponly=True,
		samesite="lax",
		secure=settings.auth_cookie_secure,
		max_age=settings.access_token_expire_minutes * 60,
		path="/",
	)


def get_current_user(
	request: Request,
	bearer: Optional[str] = Depends(oauth2_scheme),
	db: Session = Depends(get_db),
) -> User:
	"""Resolve the caller from the bearer token, falling back to the auth cookie."""
	credentials_exception = HTTPException(status_code=401, detail="Unauthorized")
	token = bearer or request.cookies.get(settings.auth_cookie_name)
	if not token:
		raise credentials_exception
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		subject: str | None = payload.get("sub")
		if subject is None:
			raise credentials_exception
		user_id = int(subject)
	except (JWTError, ValueError):
		raise HTTPException(status_code=401, detail="Invalid token")
	# A deleted account invalidates its outstanding tokens
	row = db.get(User, user_id)
	if row is None:
		raise HTTPException(status_code=401, detail="Invalid token")
	return row


def require_admin(user: User = Depends(get_current_user)) -> User:
	if user.role != ROLE_ADMIN:
		raise HTTPException(status_code=403, detail="Forbidden")
	return user


@router.post("/register", status_code=201, response_model=AuthResult)
async def register(req: RegisterRequest, response: Response, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	password = req.password or ""
	if not email or not password:
		raise HTTPException(status_code=400, detail="Email and password are required")
	existing = db.query(User).filter(User.email == email).first()
	if existing:
		raise HTTPException(status_code=409, detail="User already exists")
	row = User(
		email=email,
		password_hash=hash_password(password),
		name=(req.name or "").strip() or None,
		role=ROLE_USER,
		last_login_at=datetime.utcnow(),
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("registered user id=%s", row.id)
	token = token_for(row)
	_set_auth_cookie(response, token)
	return AuthResult(user=UserOut.from_row(row), token=token)


@router.post("/login", response_model=AuthResult)
async def login(req: LoginRequest, response: Response, db: Session = Depends(get_db)):
	row = authenticate_user(db, req.email or "", req.password or "")
	if not row:
		raise HTTPException(status_code=401, detail="Invalid credentials")
	row.last_login_at = datetime.utcnow()
	db.commit()
	token = token_for(row)
	_set_auth_cookie(response, token)
	return AuthResult(user=UserOut.from_row(row), token=token)


@router.post("/token", response_model=Token)
async def login_for_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	row = authenticate_user(db, form_data.username, form_data.password)
	if not row:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	row.last_login_at = datetime.utcnow()
	db.commit()
	return Token(access_token=token_for(row))


@router.post("/logout")
async def logout(response: Response):
	response.delete_cookie(settings.auth_cookie_name, path="/")
	return {"ok": True}


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
	return {"user": UserOut.from_row(user)}
