import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import ensure_role, get_current_user, require_roles
from ruwwad.auth.passwords import hash_password, verify_password
from ruwwad.core.errors import database_unavailable
from ruwwad.core.pagination import Page, paginate
from ruwwad.database import get_db
from ruwwad.models.assignment import Assignment, Submission
from ruwwad.models.course import Course, course_students
from ruwwad.models.feedback import Feedback
from ruwwad.models.message import Message
from ruwwad.models.notification import Notification, SentNotification
from ruwwad.models.user import ROLES, SCHOOL_GRADES, User
from ruwwad.services import notifier
from ruwwad.services.grades import assignments_for_student, enrolled_courses

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class UserSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    student_type: str | None = None
    school_grade: str | None = None
    university_major: str | None = None
    training_field: str | None = None
    phone: str | None = None
    bio: str | None = None
    subject: str | None = None
    profile_image: str | None = None
    avg_score: float | None = None
    is_verified: bool
    is_active: bool
    two_factor_enabled: bool
    preferences: dict
    parent_id: int | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class UpdateProfileRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    bio: str | None = None
    subject: str | None = None
    profile_image: str | None = None

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str | None) -> str:
        normalized = (value or '').strip()
        if not normalized:
            raise ValueError('Name cannot be blank.')
        if len(normalized) > 50:
            raise ValueError('Name must be 50 characters or fewer.')
        return normalized

    @field_validator('bio')
    @classmethod
    def validate_bio(cls, value: str | None) -> str | None:
        if value is not None and len(value) > 500:
            raise ValueError('Bio must be 500 characters or fewer.')
        return value


class AdminUpdateUserRequest(UpdateProfileRequest):
    role: str | None = None
    is_active: bool | None = None
    is_verified: bool | None = None
    student_type: str | None = None
    school_grade: str | None = None
    university_major: str | None = None
    training_field: str | None = None
    avg_score: float | None = None

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str | None) -> str:
        normalized = (value or '').strip().lower()
        if normalized not in ROLES:
            raise ValueError('Invalid role.')
        return normalized

    @field_validator('is_active', 'is_verified')
    @classmethod
    def validate_flag(cls, value: bool | None, info: ValidationInfo) -> bool:
        if value is None:
            raise ValueError(f"{info.field_name} must be true or false.")
        return value

    @field_validator('avg_score')
    @classmethod
    def validate_avg_score(cls, value: float | None) -> float:
        if value is None or not 0 <= value <= 100:
            raise ValueError('Average score must be between 0 and 100.')
        return value


class PreferencesRequest(BaseModel):
    email_notifications: bool | None = None
    push_notifications: bool | None = None
    weekly_reports: bool | None = None
    assignment_reminders: bool | None = None
    grade_notifications: bool | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class TwoFactorRequest(BaseModel):
    enabled: bool


class AddChildRequest(BaseModel):
    child_email: str

    @field_validator('child_email')
    @classmethod
    def validate_child_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Child email is required.')
        return normalized


class ChildAssignmentResponse(BaseModel):
    id: int
    title: str
    due_date: datetime
    points: int
    course_title: str | None = None
    has_submitted: bool
    is_graded: bool
    grade: float | None = None
    feedback: str | None = None


class ChildDashboardResponse(BaseModel):
    child: UserResponse
    courses: list[dict]
    assignments: list[ChildAssignmentResponse]
    stats: dict


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
    return user


def remove_user(db: Session, user: User) -> None:
    """Delete a user together with the rows that only make sense for them."""
    owns_content = (
        db.query(Course.id).filter(Course.teacher_id == user.id).first() is not None
        or db.query(Assignment.id).filter(Assignment.teacher_id == user.id).first() is not None
    )
    if owns_content:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Delete or reassign this teacher's courses and assignments first",
        )
    db.execute(course_students.delete().where(course_students.c.student_id == user.id))
    db.query(Submission).filter(Submission.student_id == user.id).delete(synchronize_session=False)
    db.query(Notification).filter(Notification.user_id == user.id).delete(synchronize_session=False)
    db.query(SentNotification).filter(SentNotification.sender_id == user.id).delete(synchronize_session=False)
    db.query(Feedback).filter(Feedback.author_id == user.id).delete(synchronize_session=False)
    db.query(Feedback).filter(Feedback.target_user_id == user.id).update(
        {Feedback.target_user_id: None}, synchronize_session=False
    )
    # Messages stay with the other participant.
    db.query(Message).filter(Message.sender_id == user.id).update(
        {Message.sender_id: None}, synchronize_session=False
    )
    db.query(Message).filter(Message.receiver_id == user.id).update(
        {Message.receiver_id: None}, synchronize_session=False
    )
    db.query(User).filter(User.parent_id == user.id).update({User.parent_id: None}, synchronize_session=False)
    db.delete(user)


# Profile routes are declared before the /{user_id} routes so they win the match.

@router.get('/profile', response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put('/profile', response_model=UserResponse)
def update_profile(
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(current_user, field, value)
        db.commit()
        db.refresh(current_user)
        return current_user
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/preferences', response_model=UserResponse)
def update_preferences(
    data: PreferencesRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        for field, value in data.model_dump(exclude_none=True).items():
            setattr(current_user, field, value)
        db.commit()
        db.refresh(current_user)
        return current_user
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/change-password')
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Current password is incorrect')

    try:
        current_user.hashed_password = hash_password(data.new_password)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s changed their password', current_user.id)
    return {'message': 'Password changed successfully'}


@router.put('/toggle-2fa')
def toggle_two_factor(
    data: TwoFactorRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        current_user.two_factor_enabled = data.enabled
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {
        'message': f"2FA {'enabled' if data.enabled else 'disabled'}",
        'two_factor_enabled': data.enabled,
    }


@router.delete('/account')
def delete_account(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        remove_user(db, current_user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Account deleted successfully'}


@router.get('/student-count')
def get_student_count_by_grade(
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    try:
        rows = db.query(User.student_type, User.school_grade, User.university_major, func.count(User.id)).filter(
            User.role == 'student',
        ).group_by(User.student_type, User.school_grade, User.university_major).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    by_grade = {grade: 0 for grade in SCHOOL_GRADES}
    by_major: dict[str, int] = {}
    total = 0
    for student_type, school_grade, university_major, count in rows:
        total += count
        if student_type == 'school' and school_grade:
            by_grade[school_grade] = by_grade.get(school_grade, 0) + count
        elif student_type == 'university':
            major = university_major or 'other'
            by_major[major] = by_major.get(major, 0) + count

    return {'total': total, 'by_grade': by_grade, 'by_major': by_major}


@router.get('/children', response_model=list[UserResponse])
def get_children(current_user: User = Depends(get_current_user)):
    if current_user.role != 'parent':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only parents can view children')
    return current_user.children


@router.post('/children')
def add_child(
    data: AddChildRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'parent':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only parents can add children')

    try:
        child = db.query(User).filter(func.lower(User.email) == data.child_email, User.role == 'student').first()
        if child is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Student not found with this email')
        if child.parent_id == current_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='This child is already linked to your account',
            )
        if child.parent_id is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This child is already linked to another parent',
            )

        child.parent_id = current_user.id
        db.commit()
        db.refresh(child)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    notifier.notify_admin(
        db,
        'Parent linked child',
        f'{current_user.full_name} linked child {child.full_name}.',
        'relationship',
    )
    return {
        'message': 'Child linked successfully',
        'child': UserSummary.model_validate(child).model_dump(),
    }


@router.delete('/children/{child_id}')
def remove_child(
    child_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'parent':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only parents can remove children')

    try:
        child = db.get(User, child_id)
        if child is None or child.parent_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Child not linked to your account')
        child.parent_id = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    notifier.notify_admin(
        db,
        'Parent removed child',
        f'{current_user.full_name} removed child {child.full_name}.',
        'relationship',
    )
    return {'message': 'Child removed successfully'}


@router.get('/children/{child_id}/dashboard', response_model=ChildDashboardResponse)
def get_child_dashboard(
    child_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'parent':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only parents can view child data')

    try:
        child = db.get(User, child_id)
        if child is None or child.parent_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have access to this child's data",
            )

        courses = enrolled_courses(db, child)
        assignments = assignments_for_student(db, child, [course.id for course in courses])
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    child_assignments = []
    graded_scores = []
    for assignment in assignments:
        submission = assignment.submission_for(child.id)
        if submission is not None and submission.is_graded and submission.grade is not None:
            graded_scores.append(submission.grade)
        child_assignments.append(
            ChildAssignmentResponse(
                id=assignment.id,
                title=assignment.title,
                due_date=assignment.due_date,
                points=assignment.points or 0,
                course_title=assignment.course.title if assignment.course else None,
                has_submitted=submission is not None,
                is_graded=bool(submission and submission.is_graded),
                grade=submission.grade if submission else None,
                feedback=submission.feedback if submission else None,
            )
        )

    now = datetime.now()
    return ChildDashboardResponse(
        child=UserResponse.model_validate(child),
        courses=[
            {'id': course.id, 'title': course.title, 'subject': course.subject, 'grade': course.grade}
            for course in courses
        ],
        assignments=child_assignments,
        stats={
            'total_courses': len(courses),
            'total_assignments': len(child_assignments),
            'submitted': sum(1 for item in child_assignments if item.has_submitted),
            'pending': sum(1 for item in child_assignments if not item.has_submitted and item.due_date >= now),
            'overdue': sum(1 for item in child_assignments if not item.has_submitted and item.due_date < now),
            'average_grade': round(sum(graded_scores) / len(graded_scores), 1) if graded_scores else None,
        },
    )


@router.get('', response_model=Page[UserResponse])
def list_users(
    role: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_role(current_user, 'admin')

    try:
        query = db.query(User).filter(User.role != 'admin')
        if role:
            query = query.filter(User.role == role.strip().lower())
        if search and search.strip():
            pattern = f'%{search.strip().lower()}%'
            query = query.filter(
                or_(
                    func.lower(User.first_name).like(pattern),
                    func.lower(User.last_name).like(pattern),
                    func.lower(User.email).like(pattern),
                )
            )
        result = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, page_size)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    result['items'] = [UserResponse.model_validate(user) for user in result['items']]
    return result


@router.get('/{user_id}', response_model=UserResponse)
def get_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if current_user.role != 'admin' and current_user.id != user_id:
        # Teachers look up students and parents look up their children.
        user = get_user_or_404(db, user_id)
        if current_user.role == 'teacher' and user.role == 'student':
            return user
        if current_user.role == 'parent' and user.parent_id == current_user.id:
            return user
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only access your own data')
    return get_user_or_404(db, user_id)


@router.put('/{user_id}', response_model=UserResponse)
def update_user(
    user_id: int,
    data: AdminUpdateUserRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_role(current_user, 'admin')
    user = get_user_or_404(db, user_id)

    try:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        db.commit()
        db.refresh(user)
        return user
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{user_id}')
def delete_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ensure_role(current_user, 'admin')
    user = get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Admins cannot delete their own account here')

    try:
        remove_user(db, user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s deleted user %s', current_user.id, user_id)
    return {'message': 'User deleted'}
