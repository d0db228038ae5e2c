"""Course model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from ruwwad.database import Base

COURSE_STATUSES = ('published', 'draft', 'archived')

course_students = Table(
    "course_students",
    Base.metadata,
    Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Course(Base):
    """Represents a course taught by a teacher."""
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)
    subject = Column(String, nullable=True)
    grade = Column(String, nullable=True)  # 'Grade 9', 'grade10' or 'University'
    university_major = Column(String, nullable=True)
    duration = Column(String, nullable=True)
    thumbnail = Column(String, nullable=True)
    status = Column(String, default='published')
    zoom_link = Column(String, nullable=True)
    schedule_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    teacher = relationship("User", foreign_keys=[teacher_id])
    students = relationship("User", secondary=course_students)

    def has_student(self, student_id: int) -> bool:
        return any(student.id == student_id for student in self.students)
