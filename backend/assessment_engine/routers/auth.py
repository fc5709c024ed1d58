from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from ..settings import settings

# Tokens are issued by the platform's auth service; this module only reads them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Student(BaseModel):
	student_id: str


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(student_id: str, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = {"sub": student_id, "exp": _resolve_expiry(expires_delta)}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_current_student(token: str = Depends(oauth2_scheme)) -> Student:
	credentials_exception = HTTPException(
		status_code=401,
		detail="Could not validate credentials",
		headers={"WWW-Authenticate": "Bearer"},
	)
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		student_id: str | None = payload.get("sub")
		if student_id is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	return Student(student_id=student_id)
