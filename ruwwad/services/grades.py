"""Matching between course/assignment grade labels and student profiles.

Teachers label content with free text such as 'Grade 10', 'grade10',
'University' or 'Computer Engineering'; students carry a structured
student_type plus school_grade ('grade10') or university_major.
"""

import re

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ruwwad.models.assignment import Assignment
from ruwwad.models.course import Course
from ruwwad.models.user import User

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def normalize_grade(label: str | None) -> str:
    """'Grade 10', 'grade10' and ' GRADE 10 ' all become 'grade10'."""
    return _WHITESPACE.sub("", label or "").lower()


def is_university_label(label: str | None) -> bool:
    lowered = (label or "").strip().lower()
    return lowered == "university" or "engineering" in lowered


def grade_clause(column, grade: str):
    """SQL condition matching a grade label column against a requested grade."""
    return func.lower(func.replace(column, " ", "")) == normalize_grade(grade)


def specialization_clause(column, specialization: str):
    return func.lower(column).contains(specialization.strip().lower())


def student_grade_clause(column, student: User):
    """Content visible to a student, based on their own grade or major."""
    if student.student_type == "school" and student.school_grade:
        return grade_clause(column, student.school_grade)
    if student.student_type == "university":
        conditions = [func.lower(column) == "university"]
        if student.university_major:
            conditions.append(specialization_clause(column, student.university_major))
        return or_(*conditions)
    return None


def students_for_grade(db: Session, grade: str | None) -> list[User]:
    query = db.query(User).filter(User.role == "student", User.is_active.is_(True))

    if grade:
        if is_university_label(grade):
            query = query.filter(User.student_type == "university")
            if "engineering" in grade.lower():
                query = query.filter(specialization_clause(User.university_major, grade))
        else:
            query = query.filter(User.student_type == "school")
            grade_number = _NON_DIGITS.sub("", grade)
            if grade_number:
                query = query.filter(User.school_grade == f"grade{int(grade_number)}")

    return query.order_by(User.id.asc()).all()


def enrolled_courses(db: Session, student: User) -> list[Course]:
    return db.query(Course).filter(Course.students.any(User.id == student.id)).order_by(Course.id.asc()).all()


def assignments_for_student(db: Session, student: User, course_ids: list[int] | None = None) -> list[Assignment]:
    """Assignments of the student's courses plus those posted for their grade."""
    if course_ids is None:
        course_ids = [course.id for course in enrolled_courses(db, student)]

    conditions = []
    if course_ids:
        conditions.append(Assignment.course_id.in_(course_ids))
    grade_condition = student_grade_clause(Assignment.grade, student)
    if grade_condition is not None:
        conditions.append(grade_condition)
    if not conditions:
        return []

    return db.query(Assignment).filter(or_(*conditions)).order_by(Assignment.due_date.asc(), Assignment.id.asc()).all()
