from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from ruwwad.models.message import Message
from ruwwad.routes import message_routes

START = datetime(2025, 3, 1, 9, 0)


def _message(db, sender, receiver, content: str, minutes: int = 0, is_read: bool = False) -> Message:
    message = Message(
        sender_id=sender.id,
        receiver_id=receiver.id,
        content=content,
        is_read=is_read,
        created_at=START + timedelta(minutes=minutes),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def test_send_message_uses_current_user_as_sender(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher')

    message = message_routes.send_message(
        message_routes.SendMessageRequest(receiver_id=teacher.id, content='  When is the quiz? '),
        current_user=student,
        db=db,
    )

    assert message.sender_id == student.id
    assert message.receiver_id == teacher.id
    assert message.content == 'When is the quiz?'
    assert message.is_read is False


@pytest.mark.parametrize(
    ('receiver', 'course_id', 'detail'),
    [('missing', None, 'Receiver not found'), ('teacher', 77, 'Course not found')],
)
def test_send_message_validates_references(db, make_user, receiver: str, course_id, detail: str) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    receiver_id = teacher.id if receiver == 'teacher' else 999

    with pytest.raises(HTTPException) as exception_info:
        message_routes.send_message(
            message_routes.SendMessageRequest(receiver_id=receiver_id, content='Hi', course_id=course_id),
            current_user=student,
            db=db,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == detail


def test_send_message_rejects_blank_content() -> None:
    with pytest.raises(ValueError, match='Message content is required.'):
        message_routes.SendMessageRequest(receiver_id=1, content='   ')


def test_conversations_group_by_partner_with_unread_counts(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher', first_name='Mona', last_name='Saleh')
    parent = make_user('parent')
    _message(db, teacher, student, 'Welcome', minutes=0)
    _message(db, student, teacher, 'Thanks', minutes=1)
    _message(db, teacher, student, 'Homework is due Friday', minutes=2)
    _message(db, teacher, student, 'Any questions?', minutes=3)
    _message(db, parent, student, 'Dinner at 7', minutes=1, is_read=True)

    conversations = message_routes.get_conversations(student.id, current_user=student, db=db)

    assert [item.partner_id for item in conversations] == [teacher.id, parent.id]
    teacher_thread = conversations[0]
    assert teacher_thread.partner_name == 'Mona Saleh'
    assert teacher_thread.partner_role == 'teacher'
    assert teacher_thread.last_message == 'Any questions?'
    assert teacher_thread.unread_count == 3
    assert conversations[1].unread_count == 0


def test_conversations_skip_messages_from_deleted_users(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    orphan = _message(db, teacher, student, 'Old message')
    orphan.sender_id = None
    db.commit()

    assert message_routes.get_conversations(student.id, current_user=student, db=db) == []


def test_conversation_is_oldest_first_and_private(db, make_user, admin) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    outsider = make_user('student')
    _message(db, student, teacher, 'Second', minutes=5)
    _message(db, teacher, student, 'First', minutes=1)
    _message(db, outsider, teacher, 'Unrelated', minutes=2)

    thread = message_routes.get_conversation(student.id, teacher.id, current_user=teacher, db=db)

    assert [message.content for message in thread] == ['First', 'Second']
    assert len(message_routes.get_conversation(student.id, teacher.id, current_user=admin, db=db)) == 2

    with pytest.raises(HTTPException) as exception_info:
        message_routes.get_conversation(student.id, teacher.id, current_user=outsider, db=db)
    assert exception_info.value.status_code == 403


def test_messages_for_user_requires_self_or_admin(db, make_user, admin) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    _message(db, student, teacher, 'Hello', minutes=1)
    _message(db, teacher, student, 'Hi', minutes=2)

    own = message_routes.get_messages_for_user(student.id, current_user=student, db=db)

    assert [message.content for message in own] == ['Hi', 'Hello']
    assert len(message_routes.get_messages_for_user(student.id, current_user=admin, db=db)) == 2
    with pytest.raises(HTTPException):
        message_routes.get_messages_for_user(student.id, current_user=teacher, db=db)


def test_only_receiver_marks_message_read(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    message = _message(db, teacher, student, 'Read me')

    with pytest.raises(HTTPException) as exception_info:
        message_routes.mark_as_read(message.id, current_user=teacher, db=db)
    assert exception_info.value.status_code == 403

    assert message_routes.mark_as_read(message.id, current_user=student, db=db).is_read is True


def test_mark_conversation_as_read_counts_updates(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    _message(db, teacher, student, 'One', minutes=1)
    _message(db, teacher, student, 'Two', minutes=2)
    _message(db, teacher, student, 'Seen', minutes=3, is_read=True)
    _message(db, student, teacher, 'Reply', minutes=4)

    response = message_routes.mark_conversation_as_read(student.id, teacher.id, current_user=student, db=db)

    assert response == {'message': 'Messages marked as read', 'modified_count': 2}
    assert db.query(Message).filter(Message.is_read.is_(False)).count() == 1


def test_delete_message_participants_only(db, make_user) -> None:
    student = make_user('student')
    teacher = make_user('teacher')
    outsider = make_user('parent')
    message = _message(db, student, teacher, 'Oops')

    with pytest.raises(HTTPException) as exception_info:
        message_routes.delete_message(message.id, current_user=outsider, db=db)
    assert exception_info.value.status_code == 403

    assert message_routes.delete_message(message.id, current_user=teacher, db=db) == {'message': 'Message deleted'}
    with pytest.raises(HTTPException) as exception_info:
        message_routes.delete_message(message.id, current_user=teacher, db=db)
    assert exception_info.value.status_code == 404
