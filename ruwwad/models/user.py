"""User model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from ruwwad.database import Base

ROLES = ('student', 'parent', 'teacher', 'trainee', 'admin')
SIGNUP_ROLES = ('student', 'parent', 'teacher', 'trainee')
STUDENT_TYPES = ('school', 'university')
SCHOOL_GRADES = tuple(f'grade{number}' for number in range(1, 13))
UNIVERSITY_MAJORS = (
    'Computer Engineering',
    'Architectural Engineering',
    'Civil Engineering',
    'Electrical Engineering',
    'Industrial Engineering',
    'Mechanical Engineering',
    'Mechatronics Engineering',
    'Chemical Engineering',
    'engineering',
    'other',
)
TRAINING_FIELDS = ('engineering', 'legal', 'languages', 'it', 'business', 'medical', 'education')


class User(Base):
    """Represents an application user of any role."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False, default='')
    role = Column(String, nullable=False)

    student_type = Column(String, nullable=True)
    school_grade = Column(String, nullable=True)
    university_major = Column(String, nullable=True)
    training_field = Column(String, nullable=True)

    phone = Column(String, nullable=True)
    bio = Column(String(500), nullable=True)
    subject = Column(String, nullable=True)
    profile_image = Column(String, nullable=True)
    avg_score = Column(Float, default=0)

    email_notifications = Column(Boolean, default=True)
    push_notifications = Column(Boolean, default=True)
    weekly_reports = Column(Boolean, default=False)
    assignment_reminders = Column(Boolean, default=True)
    grade_notifications = Column(Boolean, default=True)

    two_factor_enabled = Column(Boolean, default=False)
    is_verified = Column(Boolean, default=False)
    verification_code = Column(String, nullable=True)
    verification_expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)

    oauth_provider = Column(String, nullable=True)
    oauth_subject = Column(String, nullable=True)

    parent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    parent = relationship("User", remote_side=[id], back_populates="children")
    children = relationship("User", back_populates="parent")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or self.email

    @property
    def preferences(self) -> dict:
        return {
            'email_notifications': self.email_notifications,
            'push_notifications': self.push_notifications,
            'weekly_reports': self.weekly_reports,
            'assignment_reminders': self.assignment_reminders,
            'grade_notifications': self.grade_notifications,
        }
