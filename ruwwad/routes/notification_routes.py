import logging
from datetime import datetime, time, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import ensure_self_or_admin, get_current_user, require_roles
from ruwwad.core.errors import database_unavailable
from ruwwad.core.pagination import Page, paginate
from ruwwad.database import get_db
from ruwwad.models.assignment import Assignment
from ruwwad.models.notification import (
    NOTIFICATION_TYPES,
    SENT_NOTIFICATION_STATUSES,
    SENT_NOTIFICATION_TYPES,
    Notification,
    SentNotification,
)
from ruwwad.models.user import User
from ruwwad.services import mailer, notifier

router = APIRouter(tags=['notifications'])

logger = logging.getLogger(__name__)

RECIPIENT_GROUPS = {
    'all': None,
    'students': 'student',
    'teachers': 'teacher',
    'parents': 'parent',
}


def _required_text(value: str, label: str) -> str:
    normalized = (value or '').strip()
    if not normalized:
        raise ValueError(f'{label} is required.')
    return normalized


class CreateNotificationRequest(BaseModel):
    user_id: int
    title: str
    message: str | None = None
    type: str = 'other'

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _required_text(value, 'Title')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in NOTIFICATION_TYPES:
            raise ValueError('Invalid notification type.')
        return normalized


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    title: str
    message: str | None = None
    type: str
    is_read: bool
    created_at: datetime | None = None
    child_name: str | None = None
    child_id: int | None = None

    class Config:
        from_attributes = True


class SentNotificationResponse(BaseModel):
    id: int
    sender_id: int
    title: str
    body: str | None = None
    type: str
    recipient_count: int
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ReminderRequest(BaseModel):
    custom_message: str | None = None


class BroadcastRequest(BaseModel):
    title: str | None = None
    body: str
    type: str = 'custom'
    status: str = 'sent'

    @field_validator('body')
    @classmethod
    def validate_body(cls, value: str) -> str:
        return _required_text(value, 'Body')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SENT_NOTIFICATION_TYPES:
            raise ValueError('Invalid notification type.')
        return normalized

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SENT_NOTIFICATION_STATUSES:
            raise ValueError('Invalid notification status.')
        return normalized


class BulkMessageRequest(BaseModel):
    subject: str
    body: str
    recipient_group: str = 'all'
    recipient_target: int | None = None

    @field_validator('subject')
    @classmethod
    def validate_subject(cls, value: str) -> str:
        return _required_text(value, 'Subject')

    @field_validator('body')
    @classmethod
    def validate_body(cls, value: str) -> str:
        return _required_text(value, 'Body')

    @field_validator('recipient_group')
    @classmethod
    def validate_group(cls, value: str) -> str:
        normalized = (value or 'all').strip().lower()
        if normalized not in RECIPIENT_GROUPS:
            raise ValueError(f"Recipient group must be one of: {', '.join(RECIPIENT_GROUPS)}.")
        return normalized


class ReplyRequest(BaseModel):
    original_notification_id: int
    reply_body: str

    @field_validator('reply_body')
    @classmethod
    def validate_reply_body(cls, value: str) -> str:
        return _required_text(value, 'Reply body')


def get_notification_or_404(db: Session, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Notification not found')
    return notification


def ensure_can_manage(notification: Notification, user: User) -> None:
    if user.role == 'admin' or notification.user_id == user.id:
        return
    if user.role == 'parent' and notification.user is not None and notification.user.parent_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only manage your own notifications')


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    """Start of today until the start of the day after tomorrow."""
    start = datetime.combine(now.date(), time.min)
    return start, start + timedelta(days=2)


@router.post('', response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def create_notification(
    data: CreateNotificationRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    try:
        if db.get(User, data.user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
        notification = Notification(**data.model_dump(), is_read=False)
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/unread-count')
def get_unread_count(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        count = db.query(Notification).filter(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        ).count()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
    return {'count': count}


@router.get('/admin', response_model=Page[NotificationResponse])
def get_admin_notifications(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Notification).order_by(Notification.created_at.desc(), Notification.id.desc())
        result = paginate(query, page, page_size)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    result['items'] = [NotificationResponse.model_validate(item) for item in result['items']]
    return result


@router.get('/sent', response_model=list[SentNotificationResponse])
def get_sent_notifications(
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    try:
        return (
            db.query(SentNotification)
            .filter(SentNotification.sender_id == current_user.id)
            .order_by(SentNotification.created_at.desc(), SentNotification.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/sent', response_model=SentNotificationResponse, status_code=status.HTTP_201_CREATED)
def broadcast_to_students(
    data: BroadcastRequest,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    title = (data.title or '').strip() or 'New Notification'
    try:
        student_ids = [row.id for row in db.query(User.id).filter(User.role == 'student').all()]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    notifier.notify_users(db, student_ids, title, data.body, 'message')

    try:
        sent = SentNotification(
            sender_id=current_user.id,
            title=title,
            body=data.body,
            type=data.type,
            recipient_count=len(student_ids),
            status=data.status,
        )
        db.add(sent)
        db.commit()
        db.refresh(sent)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s broadcast %r to %d students', current_user.id, title, len(student_ids))
    return sent


@router.post('/assignment-reminder')
def send_assignment_reminder(
    data: ReminderRequest | None = None,
    current_user: User = Depends(require_roles('teacher', 'admin')),
    db: Session = Depends(get_db),
):
    start, end = reminder_window(datetime.now())
    try:
        query = db.query(Assignment).filter(Assignment.due_date >= start, Assignment.due_date < end)
        if current_user.role == 'teacher':
            query = query.filter(Assignment.teacher_id == current_user.id)
        assignments = query.order_by(Assignment.due_date.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if not assignments:
        return {
            'message': 'No assignments due today or tomorrow',
            'notifications_sent': 0,
            'students_notified': 0,
            'assignments_due': [],
        }

    student_ids: list[int] = []
    details = []
    for assignment in assignments:
        if assignment.course is not None:
            student_ids.extend(student.id for student in assignment.course.students)
        details.append(
            {
                'title': assignment.title,
                'course_name': assignment.course.title if assignment.course else 'No course',
                'due_date': assignment.due_date,
            }
        )
    student_ids = list(dict.fromkeys(student_ids))

    titles = ', '.join(item['title'] for item in details)
    custom_message = (data.custom_message or '').strip() if data else ''
    body = custom_message or f'Reminder: You have assignment(s) due soon: {titles}. Please submit on time.'

    sent_count = notifier.notify_users(db, student_ids, 'Assignment Reminder', body, 'assignment')

    try:
        db.add(
            SentNotification(
                sender_id=current_user.id,
                title='Assignment Reminder',
                body=body,
                type='reminder',
                recipient_count=len(student_ids),
                status='sent',
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {
        'message': 'Assignment reminders sent successfully',
        'notifications_sent': sent_count,
        'students_notified': len(student_ids),
        'assignments_due': details,
    }


@router.post('/bulk-message', status_code=status.HTTP_201_CREATED)
def send_bulk_message(
    data: BulkMessageRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(User)
        if data.recipient_target is not None:
            query = query.filter(User.id == data.recipient_target)
        else:
            role = RECIPIENT_GROUPS[data.recipient_group]
            query = query.filter(User.role == role) if role else query.filter(User.role != 'admin')
        recipients = query.order_by(User.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if not recipients:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No recipients found for selected criteria')

    notification_count = notifier.notify_users(db, [user.id for user in recipients], data.subject, data.body, 'message')

    try:
        db.add(
            SentNotification(
                sender_id=current_user.id,
                title=data.subject,
                body=data.body,
                type='custom',
                recipient_count=len(recipients),
                status='sent',
            )
        )
        admin_notification = Notification(
            user_id=current_user.id,
            title=f'Email sent: {data.subject}',
            message=f'Sent to {len(recipients)} recipient(s).',
            type='message',
            is_read=False,
        )
        db.add(admin_notification)
        db.commit()
        db.refresh(admin_notification)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    for recipient in recipients:
        if recipient.email_notifications:
            background_tasks.add_task(mailer.send_email, recipient.email, data.subject, data.body)

    return {
        'message': 'Email notifications sent successfully',
        'notification_count': notification_count,
        'admin_notification_id': admin_notification.id,
    }


@router.post('/reply', status_code=status.HTTP_201_CREATED)
def reply_to_notification(
    data: ReplyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        original = db.get(Notification, data.original_notification_id)
        if original is not None:
            ensure_can_manage(original, current_user)
        admin = notifier.find_admin(db)
        if admin is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Admin user not found')

        subject_part = f' regarding: {original.title}' if original is not None and original.title else ''
        reply = Notification(
            user_id=admin.id,
            title=f'Email reply from {current_user.full_name or current_user.email}{subject_part}',
            message=data.reply_body,
            type='message',
            is_read=False,
        )
        db.add(reply)
        db.commit()
        db.refresh(reply)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Reply sent successfully', 'admin_notification_id': reply.id}


@router.get('/user/{user_id}', response_model=list[NotificationResponse])
def get_notifications_for_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)

    try:
        user = db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

        if user.role != 'parent':
            return (
                db.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .all()
            )

        children = {child.id: child for child in user.children}
        notifications = (
            db.query(Notification)
            .filter(Notification.user_id.in_([user_id, *children]))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    annotated = []
    for notification in notifications:
        item = NotificationResponse.model_validate(notification)
        if notification.user_id == user_id:
            item.child_name = 'You'
        else:
            child = children.get(notification.user_id)
            item.child_name = child.full_name if child is not None and child.full_name else 'Student'
            item.child_id = notification.user_id
        annotated.append(item)
    return annotated


@router.patch('/user/{user_id}/read-all')
def mark_all_read(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)
    try:
        modified = (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .update({Notification.is_read: True}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'All notifications marked as read', 'modified_count': modified}


@router.patch('/{notification_id}/read', response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = get_notification_or_404(db, notification_id)
    ensure_can_manage(notification, current_user)

    try:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
        return notification
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{notification_id}')
def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = get_notification_or_404(db, notification_id)
    ensure_can_manage(notification, current_user)

    try:
        db.delete(notification)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Notification deleted'}
