import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import get_current_user, require_roles
from ruwwad.core.errors import database_unavailable
from ruwwad.core.pagination import Page, paginate
from ruwwad.database import get_db
from ruwwad.models.assignment import ASSIGNMENT_STATUSES, Assignment, Submission
from ruwwad.models.course import Course
from ruwwad.models.user import User
from ruwwad.routes.user_routes import UserSummary
from ruwwad.services import notifier
from ruwwad.services.grades import grade_clause, specialization_clause, students_for_grade

router = APIRouter(tags=['assignments'])

logger = logging.getLogger(__name__)


def _validate_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in ASSIGNMENT_STATUSES:
        raise ValueError(f"Status must be one of: {', '.join(ASSIGNMENT_STATUSES)}.")
    return normalized


def _validate_title(value: str | None) -> str:
    normalized = (value or '').strip()
    if not normalized:
        raise ValueError('Assignment title is required.')
    return normalized


def _validate_score(value: int | None) -> int | None:
    if value is not None and value < 0:
        raise ValueError('Scores cannot be negative.')
    return value


class CreateAssignmentRequest(BaseModel):
    title: str
    description: str | None = None
    course_id: int | None = None
    due_date: datetime
    subject: str | None = None
    grade: str | None = None
    university_major: str | None = None
    status: str | None = None
    points: int | None = None
    passing_score: int | None = None
    instructions_file_url: str | None = None
    instructions_file_name: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _validate_title(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _validate_status(value)

    @field_validator('points', 'passing_score')
    @classmethod
    def validate_score(cls, value: int | None) -> int | None:
        return _validate_score(value)


class UpdateAssignmentRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    course_id: int | None = None
    due_date: datetime | None = None
    subject: str | None = None
    grade: str | None = None
    university_major: str | None = None
    status: str | None = None
    points: int | None = None
    passing_score: int | None = None
    instructions_file_url: str | None = None
    instructions_file_name: str | None = None

    # Only fields present in the request body are validated.
    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str:
        return _validate_title(value)

    @field_validator('due_date', 'status', 'points', 'passing_score')
    @classmethod
    def validate_not_null(cls, value, info: ValidationInfo):
        if value is None:
            raise ValueError(f"{info.field_name.replace('_', ' ').capitalize()} cannot be empty.")
        return value

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _validate_status(value)

    @field_validator('points', 'passing_score')
    @classmethod
    def validate_score(cls, value: int | None) -> int | None:
        return _validate_score(value)


class SubmitAssignmentRequest(BaseModel):
    file: str | None = None
    file_name: str | None = None
    comment: str | None = None


class GradeSubmissionRequest(BaseModel):
    submission_id: int
    grade: float
    feedback: str | None = None

    @field_validator('grade')
    @classmethod
    def validate_grade(cls, value: float) -> float:
        if value < 0:
            raise ValueError('Grade cannot be negative.')
        return value


class SubmissionResponse(BaseModel):
    id: int
    assignment_id: int
    student_id: int
    student: UserSummary | None = None
    submitted_at: datetime | None = None
    file: str | None = None
    file_name: str | None = None
    comment: str | None = None
    grade: float | None = None
    feedback: str | None = None
    is_graded: bool

    class Config:
        from_attributes = True


class CourseBrief(BaseModel):
    id: int
    title: str
    subject: str | None = None
    grade: str | None = None

    class Config:
        from_attributes = True


class AssignmentResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    course_id: int | None = None
    course: CourseBrief | None = None
    teacher_id: int
    teacher: UserSummary | None = None
    due_date: datetime
    subject: str | None = None
    grade: str | None = None
    university_major: str | None = None
    status: str
    points: int
    passing_score: int
    instructions_file_url: str | None = None
    instructions_file_name: str | None = None
    submitted_count: int
    graded_count: int
    submissions: list[SubmissionResponse] | None = None
    my_submission: SubmissionResponse | None = None
    has_submitted: bool | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def serialize_assignment(assignment: Assignment, viewer: User) -> AssignmentResponse:
    """Students only ever see their own submission."""
    is_student = viewer.role == 'student'
    my_submission = assignment.submission_for(viewer.id) if is_student else None
    return AssignmentResponse(
        id=assignment.id,
        title=assignment.title,
        description=assignment.description,
        course_id=assignment.course_id,
        course=CourseBrief.model_validate(assignment.course) if assignment.course else None,
        teacher_id=assignment.teacher_id,
        teacher=UserSummary.model_validate(assignment.teacher) if assignment.teacher else None,
        due_date=assignment.due_date,
        subject=assignment.subject,
        grade=assignment.grade,
        university_major=assignment.university_major,
        status=assignment.status or 'upcoming',
        points=assignment.points if assignment.points is not None else 100,
        passing_score=assignment.passing_score if assignment.passing_score is not None else 60,
        instructions_file_url=assignment.instructions_file_url,
        instructions_file_name=assignment.instructions_file_name,
        submitted_count=assignment.submitted_count,
        graded_count=assignment.graded_count,
        submissions=None if is_student else [
            SubmissionResponse.model_validate(submission) for submission in assignment.submissions
        ],
        my_submission=SubmissionResponse.model_validate(my_submission) if my_submission else None,
        has_submitted=(my_submission is not None) if is_student else None,
        created_at=assignment.created_at,
        updated_at=assignment.updated_at,
    )


def get_assignment_or_404(db: Session, assignment_id: int) -> Assignment:
    assignment = db.get(Assignment, assignment_id)
    if assignment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assignment not found')
    return assignment


def ensure_assignment_owner(assignment: Assignment, user: User) -> None:
    if user.role == 'admin' or assignment.teacher_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only modify your own assignments')


def ensure_course_exists(db: Session, course_id: int | None) -> None:
    if course_id is not None and db.get(Course, course_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')


@router.post('', response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: CreateAssignmentRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    ensure_course_exists(db, data.course_id)

    try:
        assignment = Assignment(teacher_id=current_user.id, **data.model_dump(exclude_none=True))
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
        students = students_for_grade(db, assignment.grade)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s created assignment %s', current_user.id, assignment.id)
    notifier.notify_users(
        db,
        [student.id for student in students],
        'New Assignment Posted',
        f'A new assignment "{assignment.title}" has been posted. '
        f'Due date: {assignment.due_date:%Y-%m-%d}.',
        'assignment',
    )
    notifier.notify_admin(db, 'New assignment created', f'Assignment "{assignment.title}" was created.', 'assignment')
    return serialize_assignment(assignment, current_user)


@router.get('', response_model=Page[AssignmentResponse])
def list_assignments(
    teacher: int | None = Query(default=None),
    course: int | None = Query(default=None),
    grade: str | None = Query(default=None),
    specialization: str | None = Query(default=None),
    subject: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias='status'),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Assignment)
        if teacher is not None:
            query = query.filter(Assignment.teacher_id == teacher)
        if course is not None:
            query = query.filter(Assignment.course_id == course)
        if grade:
            query = query.filter(grade_clause(Assignment.grade, grade))
        if specialization:
            query = query.filter(specialization_clause(Assignment.grade, specialization))
        if subject:
            query = query.filter(specialization_clause(Assignment.subject, subject))
        if status_filter:
            query = query.filter(Assignment.status == status_filter.strip().lower())
        result = paginate(query.order_by(Assignment.due_date.asc(), Assignment.id.asc()), page, page_size)
        result['items'] = [serialize_assignment(assignment, current_user) for assignment in result['items']]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return result


@router.get('/{assignment_id}', response_model=AssignmentResponse)
def get_assignment(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return serialize_assignment(get_assignment_or_404(db, assignment_id), current_user)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/{assignment_id}', response_model=AssignmentResponse)
def update_assignment(
    assignment_id: int,
    data: UpdateAssignmentRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_assignment_owner(assignment, current_user)
    updates = data.model_dump(exclude_unset=True)
    ensure_course_exists(db, updates.get('course_id'))

    try:
        for field, value in updates.items():
            setattr(assignment, field, value)
        db.commit()
        db.refresh(assignment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return serialize_assignment(assignment, current_user)


@router.delete('/{assignment_id}')
def delete_assignment(
    assignment_id: int,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_assignment_owner(assignment, current_user)

    try:
        db.delete(assignment)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s deleted assignment %s', current_user.id, assignment_id)
    return {'message': 'Assignment deleted'}


@router.post('/{assignment_id}/submit', response_model=AssignmentResponse)
def submit_assignment(
    assignment_id: int,
    data: SubmitAssignmentRequest,
    current_user: User = Depends(require_roles('student')),
    db: Session = Depends(get_db),
):
    assignment = get_assignment_or_404(db, assignment_id)
    if assignment.submission_for(current_user.id) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already submitted')

    try:
        assignment.submissions.append(
            Submission(
                student_id=current_user.id,
                file=data.file or None,
                file_name=data.file_name or None,
                comment=data.comment or None,
                submitted_at=datetime.now(),
            )
        )
        db.commit()
        db.refresh(assignment)
    except IntegrityError as exc:
        # Lost a race with a concurrent submission from the same student.
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already submitted') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Student %s submitted assignment %s', current_user.id, assignment.id)
    return serialize_assignment(assignment, current_user)


@router.post('/{assignment_id}/grade', response_model=SubmissionResponse)
def grade_submission(
    assignment_id: int,
    data: GradeSubmissionRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    assignment = get_assignment_or_404(db, assignment_id)
    ensure_assignment_owner(assignment, current_user)

    submission = next((item for item in assignment.submissions if item.id == data.submission_id), None)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Submission not found')

    try:
        submission.grade = data.grade
        submission.feedback = data.feedback or ''
        submission.is_graded = True
        db.commit()
        db.refresh(submission)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    feedback_text = f' Feedback: {data.feedback}' if data.feedback else ''
    grade_text = f'{data.grade:g}%'
    notifier.notify_users(
        db,
        [submission.student_id],
        'Assignment Graded',
        f'Your assignment "{assignment.title}" has been graded. You received {grade_text}.{feedback_text}',
        'grade',
    )
    student = submission.student
    if student is not None and student.parent_id is not None:
        notifier.notify_users(
            db,
            [student.parent_id],
            "Child's Assignment Graded",
            f'{student.full_name}\'s assignment "{assignment.title}" has been graded. Grade: {grade_text}.{feedback_text}',
            'grade',
        )

    return submission
