from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ruwwad.auth import jwt_handler
from ruwwad.database import get_db
from ruwwad.models.user import User

security = HTTPBearer(auto_error=False)

ROLE_LABELS = {
    "admin": "Admin",
    "teacher": "Teacher",
    "parent": "Parent",
    "student": "Student",
    "trainee": "Trainee",
}


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = db.get(User, int(subject))
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user


def ensure_role(user: User, *roles: str) -> None:
    if user.role in roles:
        return
    label = " or ".join(ROLE_LABELS.get(role, role.title()) for role in roles)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{label} access required")


def require_roles(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        ensure_role(current_user, *roles)
        return current_user

    return dependency


def ensure_self_or_admin(user: User, target_user_id: int) -> None:
    if user.role == "admin" or user.id == target_user_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only access your own data")
