import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import ensure_self_or_admin, get_current_user
from ruwwad.core.errors import database_unavailable
from ruwwad.database import get_db
from ruwwad.models.course import Course
from ruwwad.models.message import Message
from ruwwad.models.user import User
from ruwwad.routes.user_routes import UserSummary

router = APIRouter(tags=['messages'])

logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    receiver_id: int
    content: str
    course_id: int | None = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Message content is required.')
        return normalized


class MessageResponse(BaseModel):
    id: int
    sender_id: int | None = None
    receiver_id: int | None = None
    sender: UserSummary | None = None
    receiver: UserSummary | None = None
    content: str
    course_id: int | None = None
    is_read: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ConversationSummary(BaseModel):
    partner_id: int
    partner_name: str
    partner_email: str
    partner_role: str
    last_message: str
    last_message_time: datetime | None = None
    unread_count: int


def get_message_or_404(db: Session, message_id: int) -> Message:
    message = db.get(Message, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Message not found')
    return message


def between(user_id: int, partner_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == partner_id),
        and_(Message.sender_id == partner_id, Message.receiver_id == user_id),
    )


def summarize_conversations(messages: list[Message], user_id: int) -> list[ConversationSummary]:
    """Group newest-first messages by the other participant."""
    conversations: dict[int, ConversationSummary] = {}
    for message in messages:
        if message.sender is None or message.receiver is None:
            continue
        partner = message.receiver if message.sender_id == user_id else message.sender
        summary = conversations.get(partner.id)
        if summary is None:
            summary = ConversationSummary(
                partner_id=partner.id,
                partner_name=partner.full_name or 'Unknown',
                partner_email=partner.email or '',
                partner_role=partner.role or 'user',
                last_message=message.content,
                last_message_time=message.created_at,
                unread_count=0,
            )
            conversations[partner.id] = summary
        if message.receiver_id == user_id and not message.is_read:
            summary.unread_count += 1
    return list(conversations.values())


@router.post('', response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    data: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        if db.get(User, data.receiver_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Receiver not found')
        if data.course_id is not None and db.get(Course, data.course_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')

        message = Message(
            sender_id=current_user.id,
            receiver_id=data.receiver_id,
            content=data.content,
            course_id=data.course_id,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return message
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/user/{user_id}', response_model=list[MessageResponse])
def get_messages_for_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)
    try:
        return (
            db.query(Message)
            .filter(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/conversations/{user_id}', response_model=list[ConversationSummary])
def get_conversations(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)
    try:
        messages = (
            db.query(Message)
            .filter(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .all()
        )
        return summarize_conversations(messages, user_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/conversation/{user_id}/{partner_id}', response_model=list[MessageResponse])
def get_conversation(
    user_id: int,
    partner_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'admin' and current_user.id not in (user_id, partner_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only access your own data')
    try:
        return (
            db.query(Message)
            .filter(between(user_id, partner_id))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/{message_id}/read', response_model=MessageResponse)
def mark_as_read(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = get_message_or_404(db, message_id)
    if current_user.role != 'admin' and message.receiver_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only the receiver can mark a message as read')

    try:
        message.is_read = True
        db.commit()
        db.refresh(message)
        return message
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/read/{user_id}/{partner_id}')
def mark_conversation_as_read(
    user_id: int,
    partner_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)
    try:
        modified = (
            db.query(Message)
            .filter(
                Message.sender_id == partner_id,
                Message.receiver_id == user_id,
                Message.is_read.is_(False),
            )
            .update({Message.is_read: True}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Messages marked as read', 'modified_count': modified}


@router.delete('/{message_id}')
def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = get_message_or_404(db, message_id)
    if current_user.role != 'admin' and current_user.id not in (message.sender_id, message.receiver_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only delete your own messages')

    try:
        db.delete(message)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Message deleted'}
