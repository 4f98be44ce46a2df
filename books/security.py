from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import Config

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=Config.AUTH_TOKEN_TTL_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(
        {"sub": subject, "exp": expire},
        Config.AUTH_SECRET_KEY,
        algorithm=Config.AUTH_ALGORITHM,
    )


def read_session_token(token: str) -> Optional[str]:
    """Return the user id stored in a session token, or None if it is invalid or expired."""
    try:
        payload = jwt.decode(token, Config.AUTH_SECRET_KEY, algorithms=[Config.AUTH_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
