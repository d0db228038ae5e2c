import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import get_current_user, require_roles
from ruwwad.core.errors import database_unavailable
from ruwwad.core.pagination import Page, paginate
from ruwwad.database import get_db
from ruwwad.models.assignment import Assignment
from ruwwad.models.course import COURSE_STATUSES, Course
from ruwwad.models.message import Message
from ruwwad.models.user import User
from ruwwad.routes.user_routes import UserSummary
from ruwwad.services import notifier
from ruwwad.services.grades import grade_clause, specialization_clause, student_grade_clause, students_for_grade

router = APIRouter(tags=['courses'])

logger = logging.getLogger(__name__)


class CourseFields(BaseModel):
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool | None = None
    subject: str | None = None
    grade: str | None = None
    university_major: str | None = None
    duration: str | None = None
    thumbnail: str | None = None
    status: str | None = None
    zoom_link: str | None = None
    schedule_time: datetime | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in COURSE_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(COURSE_STATUSES)}.")
        return normalized


class CreateCourseRequest(CourseFields):
    title: str
    teacher_id: int | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Course title is required.')
        return normalized


class UpdateCourseRequest(CourseFields):
    title: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Course title cannot be blank.')
        return normalized


class EnrollmentRequest(BaseModel):
    student_id: int | None = None


class CourseResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    teacher_id: int
    teacher: UserSummary | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool
    subject: str | None = None
    grade: str | None = None
    university_major: str | None = None
    duration: str | None = None
    thumbnail: str | None = None
    status: str
    zoom_link: str | None = None
    schedule_time: datetime | None = None
    student_count: int
    students: list[UserSummary] | None = None
    is_enrolled: bool | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def serialize_course(course: Course, viewer: User) -> CourseResponse:
    """Students get their own enrollment flag instead of the roster."""
    is_student = viewer.role == 'student'
    return CourseResponse(
        id=course.id,
        title=course.title,
        description=course.description,
        teacher_id=course.teacher_id,
        teacher=UserSummary.model_validate(course.teacher) if course.teacher else None,
        start_date=course.start_date,
        end_date=course.end_date,
        is_active=bool(course.is_active),
        subject=course.subject,
        grade=course.grade,
        university_major=course.university_major,
        duration=course.duration,
        thumbnail=course.thumbnail,
        status=course.status or 'published',
        zoom_link=course.zoom_link,
        schedule_time=course.schedule_time,
        student_count=len(course.students),
        students=None if is_student else [UserSummary.model_validate(student) for student in course.students],
        is_enrolled=course.has_student(viewer.id) if is_student else None,
        created_at=course.created_at,
        updated_at=course.updated_at,
    )


def get_course_or_404(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')
    return course


def ensure_course_owner(course: Course, user: User) -> None:
    if user.role == 'admin' or course.teacher_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only modify your own courses')


def resolve_student(db: Session, data: EnrollmentRequest | None, current_user: User, course: Course) -> User:
    """Students enroll themselves; the course owner or an admin names the student."""
    student_id = data.student_id if data else None
    if current_user.role == 'student':
        if student_id is not None and student_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Students can only enroll themselves')
        return current_user
    if current_user.role not in ('teacher', 'admin'):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Student access required')
    ensure_course_owner(course, current_user)
    if student_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Student ID is required')

    student = db.get(User, student_id)
    if student is None or student.role != 'student':
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found')
    return student


@router.post('', response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    data: CreateCourseRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    teacher_id = current_user.id
    if current_user.role == 'admin' and data.teacher_id is not None:
        teacher = db.get(User, data.teacher_id)
        if teacher is None or teacher.role != 'teacher':
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Teacher not found')
        teacher_id = teacher.id

    try:
        course = Course(teacher_id=teacher_id, **data.model_dump(exclude_none=True, exclude={'teacher_id'}))
        db.add(course)
        db.commit()
        db.refresh(course)
        students = students_for_grade(db, course.grade)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s created course %s', current_user.id, course.id)
    notifier.notify_users(
        db,
        [student.id for student in students],
        'New Course Available',
        f'A new course "{course.title}" is now available for you.',
        'lesson',
    )
    notifier.notify_admin(db, 'New course created', f'Course "{course.title}" was created.', 'course')
    return serialize_course(course, current_user)


@router.get('', response_model=Page[CourseResponse])
def list_courses(
    teacher: int | None = Query(default=None),
    grade: str | None = Query(default=None),
    specialization: str | None = Query(default=None),
    subject: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Course)
        if teacher is not None:
            query = query.filter(Course.teacher_id == teacher)
        if grade:
            query = query.filter(grade_clause(Course.grade, grade))
        if specialization:
            query = query.filter(specialization_clause(Course.grade, specialization))
        if subject:
            query = query.filter(specialization_clause(Course.subject, subject))
        if is_active is not None:
            query = query.filter(Course.is_active.is_(is_active))
        result = paginate(query.order_by(Course.created_at.desc(), Course.id.desc()), page, page_size)
        result['items'] = [serialize_course(course, current_user) for course in result['items']]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return result


@router.get('/available', response_model=list[CourseResponse])
def list_available_courses(
    current_user: User = Depends(require_roles('student')),
    db: Session = Depends(get_db),
):
    """Active courses for the student's own grade or major, enrolled or not."""
    try:
        query = db.query(Course).filter(Course.is_active.is_(True))
        grade_condition = student_grade_clause(Course.grade, current_user)
        if grade_condition is not None:
            query = query.filter(grade_condition)
        courses = query.order_by(Course.created_at.desc(), Course.id.desc()).all()
        return [serialize_course(course, current_user) for course in courses]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{course_id}', response_model=CourseResponse)
def get_course(course_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return serialize_course(get_course_or_404(db, course_id), current_user)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/{course_id}', response_model=CourseResponse)
def update_course(
    course_id: int,
    data: UpdateCourseRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    course = get_course_or_404(db, course_id)
    ensure_course_owner(course, current_user)

    try:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(course, field, value)
        db.commit()
        db.refresh(course)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return serialize_course(course, current_user)


@router.delete('/{course_id}')
def delete_course(
    course_id: int,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    course = get_course_or_404(db, course_id)
    ensure_course_owner(course, current_user)

    try:
        # Assignments and messages outlive the course.
        db.query(Assignment).filter(Assignment.course_id == course.id).update(
            {Assignment.course_id: None}, synchronize_session=False
        )
        db.query(Message).filter(Message.course_id == course.id).update(
            {Message.course_id: None}, synchronize_session=False
        )
        course.students = []
        db.delete(course)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s deleted course %s', current_user.id, course_id)
    return {'message': 'Course deleted'}


@router.post('/{course_id}/enroll')
def enroll_student(
    course_id: int,
    data: EnrollmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    course = get_course_or_404(db, course_id)
    student = resolve_student(db, data, current_user, course)
    already_enrolled = course.has_student(student.id)

    if not already_enrolled:
        try:
            course.students.append(student)
            db.commit()
            db.refresh(course)
        except SQLAlchemyError as exc:
            db.rollback()
            raise database_unavailable(exc) from exc

        notifier.notify_admin(
            db,
            'Student enrolled in course',
            f'{student.full_name} enrolled in course "{course.title}".',
            'enrollment',
        )

    return {
        'message': 'Already enrolled' if already_enrolled else 'Successfully enrolled',
        'is_enrolled': True,
        'course': serialize_course(course, student).model_dump(),
    }


@router.post('/{course_id}/unenroll')
def unenroll_student(
    course_id: int,
    data: EnrollmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    course = get_course_or_404(db, course_id)
    student = resolve_student(db, data, current_user, course)

    if course.has_student(student.id):
        try:
            course.students = [enrolled for enrolled in course.students if enrolled.id != student.id]
            db.commit()
            db.refresh(course)
        except SQLAlchemyError as exc:
            db.rollback()
            raise database_unavailable(exc) from exc

        notifier.notify_admin(
            db,
            'Student unenrolled from course',
            f'{student.full_name} left course "{course.title}".',
            'enrollment',
        )

    return {
        'message': 'Successfully unenrolled',
        'is_enrolled': False,
        'course': serialize_course(course, student).model_dump(),
    }
