from datetime import date, datetime, time, timedelta

import pytest
from fastapi import BackgroundTasks, HTTPException

from ruwwad.models.assignment import Assignment
from ruwwad.models.course import Course
from ruwwad.models.notification import Notification, SentNotification
from ruwwad.routes import notification_routes


def _notification(db, user, title: str = 'Hello', is_read: bool = False, minutes: int = 0) -> Notification:
    notification = Notification(
        user_id=user.id,
        title=title,
        message='Body',
        type='other',
        is_read=is_read,
        created_at=datetime(2025, 1, 1, 8, 0) + timedelta(minutes=minutes),
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def _today_at(hour: int, days: int = 0) -> datetime:
    return datetime.combine(date.today() + timedelta(days=days), time(hour, 0))


def test_reminder_window_covers_today_and_tomorrow() -> None:
    start, end = notification_routes.reminder_window(datetime(2025, 2, 28, 17, 45))

    assert start == datetime(2025, 2, 28, 0, 0)
    assert end == datetime(2025, 3, 2, 0, 0)


def test_create_notification_for_existing_user(db, make_user) -> None:
    teacher = make_user('teacher')
    student = make_user('student')

    notification = notification_routes.create_notification(
        notification_routes.CreateNotificationRequest(user_id=student.id, title=' Quiz moved ', type='Schedule'),
        current_user=teacher,
        db=db,
    )

    assert notification.user_id == student.id
    assert notification.title == 'Quiz moved'
    assert notification.type == 'schedule'
    assert notification.is_read is False

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.create_notification(
            notification_routes.CreateNotificationRequest(user_id=999, title='Lost'), current_user=teacher, db=db
        )
    assert exception_info.value.status_code == 404


def test_create_notification_rejects_unknown_type() -> None:
    with pytest.raises(ValueError, match='Invalid notification type.'):
        notification_routes.CreateNotificationRequest(user_id=1, title='Hi', type='spam')


def test_unread_count_and_mark_all_read(db, make_user) -> None:
    student = make_user('student')
    _notification(db, student)
    _notification(db, student)
    _notification(db, student, is_read=True)
    _notification(db, make_user('student'))

    assert notification_routes.get_unread_count(current_user=student, db=db) == {'count': 2}

    response = notification_routes.mark_all_read(student.id, current_user=student, db=db)

    assert response == {'message': 'All notifications marked as read', 'modified_count': 2}
    assert notification_routes.get_unread_count(current_user=student, db=db) == {'count': 0}


def test_parent_sees_children_notifications_annotated(db, make_user) -> None:
    parent = make_user('parent')
    child = make_user('student', first_name='Yousef', last_name='Ali', parent_id=parent.id)
    stranger = make_user('student')
    _notification(db, parent, 'For parent', minutes=1)
    _notification(db, child, 'For child', minutes=2)
    _notification(db, stranger, 'For stranger', minutes=3)

    notifications = notification_routes.get_notifications_for_user(parent.id, current_user=parent, db=db)

    assert [(item.title, item.child_name, item.child_id) for item in notifications] == [
        ('For child', 'Yousef Ali', child.id),
        ('For parent', 'You', None),
    ]


def test_students_get_plain_notifications(db, make_user) -> None:
    student = make_user('student')
    _notification(db, student, 'Older', minutes=1)
    _notification(db, student, 'Newer', minutes=2)

    notifications = notification_routes.get_notifications_for_user(student.id, current_user=student, db=db)

    assert [item.title for item in notifications] == ['Newer', 'Older']

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.get_notifications_for_user(student.id, current_user=make_user('teacher'), db=db)
    assert exception_info.value.status_code == 403


def test_parent_manages_child_notification(db, make_user) -> None:
    parent = make_user('parent')
    child = make_user('student', parent_id=parent.id)
    outsider = make_user('parent')
    notification = _notification(db, child)

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.mark_notification_read(notification.id, current_user=outsider, db=db)
    assert exception_info.value.status_code == 403

    assert notification_routes.mark_notification_read(notification.id, current_user=parent, db=db).is_read is True
    assert notification_routes.delete_notification(notification.id, current_user=parent, db=db) == {
        'message': 'Notification deleted'
    }

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.delete_notification(notification.id, current_user=parent, db=db)
    assert exception_info.value.status_code == 404


def test_admin_notifications_are_paginated(db, make_user, admin) -> None:
    student = make_user('student')
    for minute in range(3):
        _notification(db, student, f'Note {minute}', minutes=minute)

    page = notification_routes.get_admin_notifications(page=1, page_size=2, current_user=admin, db=db)

    assert page['total'] == 3
    assert [item.title for item in page['items']] == ['Note 2', 'Note 1']
    assert page['has_next'] is True


def test_broadcast_to_students_records_sent_notification(db, make_user) -> None:
    teacher = make_user('teacher')
    students = [make_user('student'), make_user('student')]
    make_user('parent')

    sent = notification_routes.broadcast_to_students(
        notification_routes.BroadcastRequest(title='  ', body='Class is cancelled', type='Cancellation'),
        current_user=teacher,
        db=db,
    )

    assert sent.title == 'New Notification'
    assert sent.type == 'cancellation'
    assert sent.recipient_count == 2
    assert sorted(row.user_id for row in db.query(Notification).all()) == [student.id for student in students]
    assert [item.id for item in notification_routes.get_sent_notifications(current_user=teacher, db=db)] == [sent.id]


def test_assignment_reminder_targets_enrolled_students(db, make_user) -> None:
    teacher = make_user('teacher')
    other_teacher = make_user('teacher')
    enrolled = make_user('student')
    make_user('student')
    course = Course(title='Algebra', teacher_id=teacher.id)
    course.students.append(enrolled)
    db.add(course)
    db.commit()
    db.add_all(
        [
            Assignment(title='Worksheet', teacher_id=teacher.id, course_id=course.id, due_date=_today_at(12)),
            Assignment(title='Project', teacher_id=teacher.id, course_id=course.id, due_date=_today_at(9, days=1)),
            Assignment(title='Next week', teacher_id=teacher.id, course_id=course.id, due_date=_today_at(9, days=7)),
            Assignment(title='Not mine', teacher_id=other_teacher.id, due_date=_today_at(12)),
        ]
    )
    db.commit()

    response = notification_routes.send_assignment_reminder(None, current_user=teacher, db=db)

    assert response['message'] == 'Assignment reminders sent successfully'
    assert response['notifications_sent'] == 1
    assert response['students_notified'] == 1
    assert [item['title'] for item in response['assignments_due']] == ['Worksheet', 'Project']
    assert response['assignments_due'][0]['course_name'] == 'Algebra'

    reminder = db.query(Notification).one()
    assert reminder.user_id == enrolled.id
    assert reminder.message == 'Reminder: You have assignment(s) due soon: Worksheet, Project. Please submit on time.'
    assert db.query(SentNotification).one().type == 'reminder'


def test_assignment_reminder_uses_custom_message(db, make_user, admin) -> None:
    teacher = make_user('teacher')
    student = make_user('student')
    course = Course(title='Physics', teacher_id=teacher.id)
    course.students.append(student)
    db.add(course)
    db.commit()
    db.add(Assignment(title='Lab', teacher_id=teacher.id, course_id=course.id, due_date=_today_at(23)))
    db.commit()

    response = notification_routes.send_assignment_reminder(
        notification_routes.ReminderRequest(custom_message='Bring your goggles'), current_user=admin, db=db
    )

    assert response['notifications_sent'] == 1
    assert db.query(Notification).one().message == 'Bring your goggles'


def test_assignment_reminder_with_nothing_due(db, make_user) -> None:
    response = notification_routes.send_assignment_reminder(None, current_user=make_user('teacher'), db=db)

    assert response == {
        'message': 'No assignments due today or tomorrow',
        'notifications_sent': 0,
        'students_notified': 0,
        'assignments_due': [],
    }
    assert db.query(SentNotification).count() == 0


def test_bulk_message_to_group_queues_opted_in_emails(db, make_user, admin) -> None:
    opted_in = make_user('teacher')
    make_user('teacher', email_notifications=False)
    make_user('student')
    background_tasks = BackgroundTasks()

    response = notification_routes.send_bulk_message(
        notification_routes.BulkMessageRequest(subject='Staff meeting', body='Room 4 at noon', recipient_group='Teachers'),
        background_tasks,
        current_user=admin,
        db=db,
    )

    assert response['message'] == 'Email notifications sent successfully'
    assert response['notification_count'] == 2
    admin_note = db.get(Notification, response['admin_notification_id'])
    assert admin_note.user_id == admin.id
    assert admin_note.title == 'Email sent: Staff meeting'
    assert db.query(SentNotification).one().type == 'custom'
    assert [task.args for task in background_tasks.tasks] == [(opted_in.email, 'Staff meeting', 'Room 4 at noon')]


def test_bulk_message_to_single_target_and_no_recipients(db, make_user, admin) -> None:
    parent = make_user('parent')

    response = notification_routes.send_bulk_message(
        notification_routes.BulkMessageRequest(subject='Hi', body='Just you', recipient_target=parent.id),
        BackgroundTasks(),
        current_user=admin,
        db=db,
    )
    assert response['notification_count'] == 1

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.send_bulk_message(
            notification_routes.BulkMessageRequest(subject='Hi', body='Nobody', recipient_group='students'),
            BackgroundTasks(),
            current_user=admin,
            db=db,
        )
    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'No recipients found for selected criteria'


def test_bulk_message_rejects_unknown_group() -> None:
    with pytest.raises(ValueError, match='Recipient group must be one of'):
        notification_routes.BulkMessageRequest(subject='Hi', body='Body', recipient_group='aliens')


def test_reply_goes_to_admin(db, make_user, admin) -> None:
    teacher = make_user('teacher', first_name='Rana', last_name='Odeh')
    original = _notification(db, teacher, 'Staff meeting')

    response = notification_routes.reply_to_notification(
        notification_routes.ReplyRequest(original_notification_id=original.id, reply_body='I will attend'),
        current_user=teacher,
        db=db,
    )

    reply = db.get(Notification, response['admin_notification_id'])
    assert response['message'] == 'Reply sent successfully'
    assert reply.user_id == admin.id
    assert reply.title == 'Email reply from Rana Odeh regarding: Staff meeting'
    assert reply.message == 'I will attend'


def test_reply_without_admin_account(db, make_user) -> None:
    teacher = make_user('teacher')

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.reply_to_notification(
            notification_routes.ReplyRequest(original_notification_id=1, reply_body='Hello'),
            current_user=teacher,
            db=db,
        )

    assert exception_info.value.detail == 'Admin user not found'


def test_reply_rejects_another_users_notification(db, make_user, admin) -> None:
    owner = make_user('teacher')
    intruder = make_user('student')
    private = _notification(db, owner, 'Salary review')

    with pytest.raises(HTTPException) as exception_info:
        notification_routes.reply_to_notification(
            notification_routes.ReplyRequest(original_notification_id=private.id, reply_body='Interesting'),
            current_user=intruder,
            db=db,
        )

    assert exception_info.value.status_code == 403
    assert db.query(Notification).filter(Notification.user_id == admin.id).count() == 0
