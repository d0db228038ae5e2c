"""Notification model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from ruwwad.database import Base

NOTIFICATION_TYPES = (
    'assignment',
    'message',
    'system',
    'grade',
    'lesson',
    'quiz',
    'schedule',
    'achievement',
    'deadline',
    'course',
    'enrollment',
    'relationship',
    'other',
)
SENT_NOTIFICATION_TYPES = ('reminder', 'cancellation', 'custom', 'other')
SENT_NOTIFICATION_STATUSES = ('sent', 'scheduled')


class Notification(Base):
    """An inbox entry for a single user."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=True)
    type = Column(String, default='other')
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now)

    user = relationship("User")


class SentNotification(Base):
    """Outbox record of a notification batch sent by a teacher or admin."""
    __tablename__ = "sent_notifications"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    body = Column(String, nullable=True)
    type = Column(String, default='other')
    recipient_count = Column(Integer, default=0)
    status = Column(String, default='sent')
    created_at = Column(DateTime, default=datetime.now)
