import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..settings import settings
from ..state import get_db
from ..models import AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/anonymous")

PASSWORD_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
PASSWORD_LENGTH = 6


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"
	uid: str


class User(BaseModel):
	uid: str


def generate_password() -> str:
	"""One-time access password for a verification (6 uppercase alphanumerics)."""
	return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(PASSWORD_LENGTH))


def hash_password(password: str) -> str:
	return pwd_context.hash(password)


def verify_password(plain_password: Optional[str], hashed_password: Optional[str]) -> bool:
	if not plain_password or not hashed_password:
		return False
	# Students may type the password in lowercase
	return pwd_context.verify(plain_password.strip().upper(), hashed_password)


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/anonymous", response_model=Token)
async def sign_in_anonymously(db: Session = Depends(get_db)):
	uid = uuid.uuid4().hex
	session_id = uuid.uuid4().hex
	try:
		db.add(AuthSession(session_id=session_id, uid=uid))
		db.commit()
	except Exception:
		db.rollback()
		raise HTTPException(status_code=503, detail="Could not start an anonymous session")
	access_token = create_access_token({"sub": uid, "jti": session_id})
	return Token(access_token=access_token, uid=uid)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		uid: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if uid is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist (sessions can be revoked server-side)
	try:
		row = db.get(AuthSession, jti)
		if not row or row.uid != uid:
			raise credentials_exception
		row.last_activity_at = datetime.now(timezone.utc)
		db.commit()
	except HTTPException:
		raise
	except Exception:
		# On DB errors, fail closed
		db.rollback()
		raise credentials_exception
	return User(uid=uid)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user
