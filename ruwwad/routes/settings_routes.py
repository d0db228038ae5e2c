from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import require_roles
from ruwwad.core.errors import database_unavailable
from ruwwad.database import get_db
from ruwwad.models.system_settings import LANGUAGES, SystemSettings
from ruwwad.models.user import User

router = APIRouter(tags=['system-settings'])


class SystemSettingsRequest(BaseModel):
    platform_name: str | None = None
    platform_version: str | None = None
    default_language: str | None = None
    timezone: str | None = None
    admin_email: str | None = None
    support_email: str | None = None

    @field_validator('default_language')
    @classmethod
    def validate_language(cls, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        normalized = value.strip().lower()
        if normalized not in LANGUAGES:
            raise ValueError(f"Default language must be one of: {', '.join(LANGUAGES)}.")
        return normalized


class SystemSettingsResponse(BaseModel):
    platform_name: str
    platform_version: str
    default_language: str
    timezone: str
    admin_email: str | None = None
    support_email: str | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


def get_or_create_settings(db: Session) -> SystemSettings:
    settings = db.query(SystemSettings).order_by(SystemSettings.id.asc()).first()
    if settings is None:
        settings = SystemSettings()
        db.add(settings)
        db.commit()
        db.refresh(settings)
    return settings


@router.get('', response_model=SystemSettingsResponse)
def get_system_settings(
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    try:
        return get_or_create_settings(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('', response_model=SystemSettingsResponse)
def update_system_settings(
    data: SystemSettingsRequest,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    try:
        settings = get_or_create_settings(db)
        # Blank values keep the stored setting.
        for field, value in data.model_dump().items():
            if isinstance(value, str) and value.strip():
                setattr(settings, field, value.strip())
        db.commit()
        db.refresh(settings)
        return settings
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
