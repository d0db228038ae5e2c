from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import get_current_user
from ruwwad.core.errors import database_unavailable
from ruwwad.database import get_db
from ruwwad.models.course import Course
from ruwwad.models.feedback import MAX_RATING, MIN_RATING, Feedback
from ruwwad.models.user import User
from ruwwad.routes.user_routes import UserSummary

router = APIRouter(tags=['feedback'])

TESTIMONIAL_MIN_RATING = 4


def _validate_rating(value: int | None) -> int | None:
    if value is not None and not MIN_RATING <= value <= MAX_RATING:
        raise ValueError(f'Rating must be between {MIN_RATING} and {MAX_RATING}.')
    return value


def _clean_comment(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip()


class FeedbackRequest(BaseModel):
    rating: int | None = None
    comment: str | None = None
    target_user_id: int | None = None
    course_id: int | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int | None) -> int | None:
        return _validate_rating(value)

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return _clean_comment(value)


class UpdateFeedbackRequest(BaseModel):
    rating: int | None = None
    comment: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int | None) -> int | None:
        return _validate_rating(value)

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return _clean_comment(value)


class FeedbackResponse(BaseModel):
    id: int
    author_id: int
    author: UserSummary | None = None
    target_user_id: int | None = None
    target_user: UserSummary | None = None
    course_id: int | None = None
    rating: int | None = None
    comment: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class Testimonial(BaseModel):
    id: int
    author_name: str
    author_role: str | None = None
    rating: int
    comment: str | None = None


def get_feedback_or_404(db: Session, feedback_id: int) -> Feedback:
    feedback = db.get(Feedback, feedback_id)
    if feedback is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Feedback not found')
    return feedback


def ensure_author_or_admin(feedback: Feedback, user: User) -> None:
    if user.role == 'admin' or feedback.author_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only modify your own feedback')


@router.get('/random', response_model=list[Testimonial])
def get_random_feedback(limit: int = Query(default=5, ge=1, le=20), db: Session = Depends(get_db)):
    """Public: a random sample of positive feedback for the welcome page."""
    try:
        rows = (
            db.query(Feedback)
            .filter(Feedback.rating >= TESTIMONIAL_MIN_RATING)
            .order_by(func.random())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        Testimonial(
            id=row.id,
            author_name=row.author.full_name if row.author else 'User',
            author_role=row.author.role if row.author else None,
            rating=row.rating,
            comment=row.comment,
        )
        for row in rows
    ]


@router.post('', response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
def create_feedback(
    data: FeedbackRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.rating is None and not data.comment:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='A rating or a comment is required')

    try:
        if data.target_user_id is not None and db.get(User, data.target_user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
        if data.course_id is not None and db.get(Course, data.course_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')

        feedback = Feedback(author_id=current_user.id, **data.model_dump())
        db.add(feedback)
        db.commit()
        db.refresh(feedback)
        return feedback
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('', response_model=list[FeedbackResponse])
def list_feedback(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return db.query(Feedback).order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/mine')
def get_my_feedback(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        received = (
            db.query(Feedback)
            .filter(Feedback.target_user_id == current_user.id)
            .order_by(Feedback.created_at.desc(), Feedback.id.desc())
            .all()
        )
        given = (
            db.query(Feedback)
            .filter(Feedback.author_id == current_user.id)
            .order_by(Feedback.created_at.desc(), Feedback.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return {
        'received': [FeedbackResponse.model_validate(item) for item in received],
        'given': [FeedbackResponse.model_validate(item) for item in given],
    }


@router.get('/{feedback_id}', response_model=FeedbackResponse)
def get_feedback(feedback_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_feedback_or_404(db, feedback_id)


@router.put('/{feedback_id}', response_model=FeedbackResponse)
def update_feedback(
    feedback_id: int,
    data: UpdateFeedbackRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    feedback = get_feedback_or_404(db, feedback_id)
    ensure_author_or_admin(feedback, current_user)
    updates = data.model_dump(exclude_unset=True)
    if updates.get('rating', feedback.rating) is None and not updates.get('comment', feedback.comment):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='A rating or a comment is required')

    try:
        for field, value in updates.items():
            setattr(feedback, field, value)
        db.commit()
        db.refresh(feedback)
        return feedback
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{feedback_id}')
def delete_feedback(feedback_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    feedback = get_feedback_or_404(db, feedback_id)
    ensure_author_or_admin(feedback, current_user)

    try:
        db.delete(feedback)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Feedback deleted'}
