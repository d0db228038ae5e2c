from datetime import datetime, timedelta, timezone

import jwt

from ruwwad.core import config

DASHBOARD_PATHS = {
    "student": "/home/student",
    "teacher": "/home/teacher",
    "parent": "/home/parent",
    "trainee": "/home/trainee",
    "admin": "/home/admin",
}
DEFAULT_DASHBOARD_PATH = "/home"


def create_access_token(
    subject: str,
    email: str,
    role: str,
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expire_minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_token_for_user(user) -> str:
    return create_access_token(subject=str(user.id), email=user.email, role=user.role)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def _read_claims(token: str) -> dict:
    """Read claims without checking signature or expiry."""
    return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})


def get_token_role(token: str | None) -> str | None:
    if not token:
        return None
    try:
        claims = _read_claims(token)
    except jwt.PyJWTError:
        return None
    return claims.get("role") or claims.get("userType") or None


def is_token_expired(token: str | None, now: datetime | None = None) -> bool:
    if not token:
        return True
    try:
        claims = _read_claims(token)
    except jwt.PyJWTError:
        return True

    expires_at = claims.get("exp")
    if expires_at is None:
        return True
    current = (now or datetime.now(timezone.utc)).timestamp()
    return expires_at < current


def dashboard_path_for_role(role: str | None) -> str:
    if not role:
        return DEFAULT_DASHBOARD_PATH
    return DASHBOARD_PATHS.get(role.strip().lower(), DEFAULT_DASHBOARD_PATH)
