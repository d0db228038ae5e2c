"""System settings model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from ruwwad.database import Base

LANGUAGES = ('en', 'ar')


class SystemSettings(Base):
    """Platform-wide settings, stored as a single row."""
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True)
    platform_name = Column(String, default='Ruwwad Educational Platform')
    platform_version = Column(String, default='v1.0.0')
    default_language = Column(String, default='ar')
    timezone = Column(String, default='Asia/Riyadh')
    admin_email = Column(String, default='admin@ruwwad.edu')
    support_email = Column(String, default='support@ruwwad.edu')
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
