"""Assignment and submission model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ruwwad.database import Base

ASSIGNMENT_STATUSES = ('active', 'upcoming', 'closed')


class Assignment(Base):
    """Represents homework posted by a teacher."""
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    due_date = Column(DateTime, nullable=False)
    subject = Column(String, nullable=True)
    grade = Column(String, nullable=True)
    university_major = Column(String, nullable=True)
    status = Column(String, default='upcoming')
    points = Column(Integer, default=100)
    passing_score = Column(Integer, default=60)
    instructions_file_url = Column(String, nullable=True)
    instructions_file_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    course = relationship("Course")
    teacher = relationship("User", foreign_keys=[teacher_id])
    submissions = relationship(
        "Submission",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="Submission.submitted_at",
    )

    @property
    def submitted_count(self) -> int:
        return len(self.submissions)

    @property
    def graded_count(self) -> int:
        return sum(1 for submission in self.submissions if submission.is_graded)

    def submission_for(self, student_id: int):
        for submission in self.submissions:
            if submission.student_id == student_id:
                return submission
        return None


class Submission(Base):
    """A student's hand-in for one assignment."""
    __tablename__ = "submissions"
    __table_args__ = (UniqueConstraint("assignment_id", "student_id", name="uq_submission_student"),)

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    submitted_at = Column(DateTime, default=datetime.now)
    file = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    comment = Column(String, nullable=True)
    grade = Column(Float, nullable=True)
    feedback = Column(String, nullable=True)
    is_graded = Column(Boolean, default=False)

    assignment = relationship("Assignment", back_populates="submissions")
    student = relationship("User")
