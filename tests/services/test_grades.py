from datetime import datetime, timedelta

import pytest

from ruwwad.models.assignment import Assignment
from ruwwad.models.course import Course
from ruwwad.services.grades import (
    assignments_for_student,
    enrolled_courses,
    grade_clause,
    is_university_label,
    normalize_grade,
    student_grade_clause,
    students_for_grade,
)


@pytest.mark.parametrize('label', ['Grade 10', 'grade10', ' GRADE 10 ', 'grade 1 0'])
def test_normalize_grade_ignores_case_and_spaces(label: str) -> None:
    assert normalize_grade(label) == 'grade10'


def test_normalize_grade_handles_missing_label() -> None:
    assert normalize_grade(None) == ''


@pytest.mark.parametrize(
    ('label', 'expected'),
    [('University', True), ('Civil Engineering', True), ('Grade 9', False), (None, False)],
)
def test_is_university_label(label, expected: bool) -> None:
    assert is_university_label(label) is expected


def test_students_for_grade_matches_school_grade_number(db, make_user) -> None:
    grade10 = make_user('student', school_grade='grade10')
    make_user('student', school_grade='grade9')
    make_user('student', student_type='university', university_major='Civil Engineering')
    make_user('student', school_grade='grade10', is_active=False)

    assert [user.id for user in students_for_grade(db, 'Grade 10')] == [grade10.id]


def test_students_for_grade_matches_engineering_major(db, make_user) -> None:
    civil = make_user('student', student_type='university', university_major='Civil Engineering')
    make_user('student', student_type='university', university_major='Computer Engineering')
    make_user('student', school_grade='grade10')

    assert [user.id for user in students_for_grade(db, 'Civil Engineering')] == [civil.id]


def test_students_for_university_label_returns_all_university_students(db, make_user) -> None:
    civil = make_user('student', student_type='university', university_major='Civil Engineering')
    computer = make_user('student', student_type='university', university_major='Computer Engineering')
    make_user('student', school_grade='grade10')

    assert [user.id for user in students_for_grade(db, 'University')] == [civil.id, computer.id]


def test_students_for_grade_without_grade_returns_every_active_student(db, make_user) -> None:
    make_user('teacher')
    students = [make_user('student'), make_user('student', school_grade='grade3')]

    assert [user.id for user in students_for_grade(db, None)] == [student.id for student in students]


def test_grade_clause_matches_loosely_formatted_course_grades(db, make_user) -> None:
    teacher = make_user('teacher')
    db.add_all(
        [
            Course(title='Algebra', teacher_id=teacher.id, grade='Grade 10'),
            Course(title='Physics', teacher_id=teacher.id, grade='grade10'),
            Course(title='Biology', teacher_id=teacher.id, grade='Grade 11'),
        ]
    )
    db.commit()

    titles = [course.title for course in db.query(Course).filter(grade_clause(Course.grade, 'GRADE 10')).order_by(Course.id)]

    assert titles == ['Algebra', 'Physics']


def test_student_grade_clause_for_university_student(db, make_user) -> None:
    teacher = make_user('teacher')
    student = make_user('student', student_type='university', university_major='Civil Engineering')
    db.add_all(
        [
            Course(title='Statics', teacher_id=teacher.id, grade='Civil Engineering'),
            Course(title='Orientation', teacher_id=teacher.id, grade='University'),
            Course(title='Circuits', teacher_id=teacher.id, grade='Electrical Engineering'),
        ]
    )
    db.commit()

    titles = [
        course.title
        for course in db.query(Course).filter(student_grade_clause(Course.grade, student)).order_by(Course.id)
    ]

    assert titles == ['Statics', 'Orientation']


def test_student_grade_clause_is_none_without_profile(make_user) -> None:
    assert student_grade_clause(Course.grade, make_user('student', student_type=None)) is None


def test_assignments_for_student_combines_enrolled_courses_and_grade(db, make_user) -> None:
    teacher = make_user('teacher')
    student = make_user('student', school_grade='grade10')
    enrolled = Course(title='Chemistry', teacher_id=teacher.id, grade='Grade 12')
    enrolled.students.append(student)
    other = Course(title='History', teacher_id=teacher.id, grade='Grade 12')
    db.add_all([enrolled, other])
    db.commit()

    now = datetime.now()
    db.add_all(
        [
            Assignment(title='Lab report', teacher_id=teacher.id, course_id=enrolled.id, due_date=now + timedelta(days=3)),
            Assignment(title='Essay', teacher_id=teacher.id, course_id=other.id, due_date=now + timedelta(days=1)),
            Assignment(title='Quadratics', teacher_id=teacher.id, grade='Grade 10', due_date=now + timedelta(days=2)),
        ]
    )
    db.commit()

    assert [course.title for course in enrolled_courses(db, student)] == ['Chemistry']
    assert [assignment.title for assignment in assignments_for_student(db, student)] == ['Quadratics', 'Lab report']


def test_assignments_for_student_without_courses_or_grade(db, make_user) -> None:
    student = make_user('student', student_type=None)

    assert assignments_for_student(db, student) == []
