"""Role dashboards: one aggregate read per screen."""

import calendar
import logging
from collections import Counter
from datetime import datetime, time, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.dependencies import require_roles
from ruwwad.core import config
from ruwwad.core.errors import database_unavailable
from ruwwad.database import get_db
from ruwwad.models.assignment import Assignment, Submission
from ruwwad.models.course import Course
from ruwwad.models.feedback import Feedback
from ruwwad.models.message import Message
from ruwwad.models.notification import Notification
from ruwwad.models.user import User
from ruwwad.routes.user_routes import UserResponse
from ruwwad.services.grades import assignments_for_student, enrolled_courses, student_grade_clause

router = APIRouter(tags=['dashboard'])

logger = logging.getLogger(__name__)

ACTIVITY_WINDOW_DAYS = 7
REPORT_MONTHS = 6


def calc_percent_change(total: int, new_this_month: int) -> float:
    """Growth of this month's additions relative to everything before them."""
    previous_total = total - new_this_month
    if previous_total == 0:
        return 100.0 if new_this_month > 0 else 0.0
    return round(new_this_month / previous_total * 100, 1)


def months_ago(now: datetime, months: int) -> datetime:
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def activity_rate(recent_assignments: int, recent_messages: int) -> int:
    return min(recent_assignments * 10 + recent_messages * 5, 100)


def _excerpt(text: str | None, length: int = 50) -> str:
    return (text or '')[:length]


def _count_users(db: Session, role: str | None = None, since: datetime | None = None) -> int:
    query = db.query(func.count(User.id))
    if role is None:
        query = query.filter(User.role != 'admin', func.lower(User.email) != config.ADMIN_EMAIL)
    else:
        query = query.filter(User.role == role)
    if since is not None:
        query = query.filter(User.created_at >= since)
    return query.scalar() or 0


@router.get('/admin')
def get_admin_dashboard(current_user: User = Depends(require_roles('admin')), db: Session = Depends(get_db)):
    one_month_ago = months_ago(datetime.now(), 1)

    try:
        totals = {role: _count_users(db, role) for role in ('student', 'teacher', 'parent', 'trainee')}
        new_this_month = {role: _count_users(db, role, one_month_ago) for role in ('student', 'teacher', 'parent')}
        total_users = _count_users(db)
        new_users = _count_users(db, since=one_month_ago)

        total_courses = db.query(func.count(Course.id)).scalar() or 0
        active_courses = db.query(func.count(Course.id)).filter(Course.is_active.is_(True)).scalar() or 0
        total_assignments = db.query(func.count(Assignment.id)).scalar() or 0
        total_messages = db.query(func.count(Message.id)).scalar() or 0
        total_notifications = db.query(func.count(Notification.id)).scalar() or 0
        total_feedback = db.query(func.count(Feedback.id)).scalar() or 0
        avg_rating = db.query(func.avg(Feedback.rating)).filter(Feedback.rating.isnot(None)).scalar()

        parents_with_children = (
            db.query(func.count(func.distinct(User.parent_id))).filter(User.parent_id.isnot(None)).scalar() or 0
        )

        recent_users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(10).all()
        recent_feedback = db.query(Feedback).order_by(Feedback.created_at.desc(), Feedback.id.desc()).limit(10).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    total_parents = totals['parent']
    activities = [
        {
            'type': 'new_user',
            'id': user.id,
            'title': f'New {user.role}: {user.full_name}',
            'description': user.email,
            'created_at': user.created_at,
        }
        for user in recent_users
    ] + [
        {
            'type': 'feedback',
            'id': feedback.id,
            'title': f"Feedback from {feedback.author.first_name if feedback.author else 'User'}",
            'description': _excerpt(feedback.comment) or f'Rating: {feedback.rating}/5',
            'created_at': feedback.created_at,
        }
        for feedback in recent_feedback
    ]
    activities.sort(key=lambda item: item['created_at'] or datetime.min, reverse=True)

    return {
        'stats': {
            'total_users': total_users,
            'total_students': totals['student'],
            'total_teachers': totals['teacher'],
            'total_parents': total_parents,
            'total_trainees': totals['trainee'],
            'total_courses': total_courses,
            'active_courses': active_courses,
            'total_assignments': total_assignments,
            'total_messages': total_messages,
            'total_notifications': total_notifications,
            'total_feedback': total_feedback,
            'avg_rating': round(float(avg_rating), 1) if avg_rating is not None else 0.0,
            'user_change': calc_percent_change(total_users, new_users),
            'student_change': calc_percent_change(totals['student'], new_this_month['student']),
            'teacher_change': calc_percent_change(totals['teacher'], new_this_month['teacher']),
            'parent_change': calc_percent_change(total_parents, new_this_month['parent']),
            'parent_engagement': round(parents_with_children / total_parents * 100, 1) if total_parents else 0.0,
        },
        'recent_users': [UserResponse.model_validate(user) for user in recent_users],
        'recent_activities': activities[:15],
    }


@router.get('/admin/reports')
def get_admin_reports(current_user: User = Depends(require_roles('admin')), db: Session = Depends(get_db)):
    """Monthly registrations by role plus course and assignment creation."""
    since = months_ago(datetime.now(), REPORT_MONTHS)

    try:
        registrations = db.query(User.created_at, User.role).filter(User.created_at >= since).all()
        course_dates = db.query(Course.created_at).filter(Course.created_at >= since).all()
        assignment_dates = db.query(Assignment.created_at).filter(Assignment.created_at >= since).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    registration_counts = Counter((created.year, created.month, role) for created, role in registrations)
    course_counts = Counter((created.year, created.month) for (created,) in course_dates)
    assignment_counts = Counter((created.year, created.month) for (created,) in assignment_dates)

    return {
        'registration_stats': [
            {'year': year, 'month': month, 'role': role, 'count': count}
            for (year, month, role), count in sorted(registration_counts.items())
        ],
        'course_stats': [
            {'year': year, 'month': month, 'count': count} for (year, month), count in sorted(course_counts.items())
        ],
        'assignment_stats': [
            {'year': year, 'month': month, 'count': count}
            for (year, month), count in sorted(assignment_counts.items())
        ],
    }


@router.get('/teacher')
def get_teacher_dashboard(current_user: User = Depends(require_roles('teacher')), db: Session = Depends(get_db)):
    since = datetime.now() - timedelta(days=ACTIVITY_WINDOW_DAYS)

    try:
        courses = (
            db.query(Course)
            .filter(Course.teacher_id == current_user.id)
            .order_by(Course.created_at.desc(), Course.id.desc())
            .all()
        )
        assignments = (
            db.query(Assignment)
            .filter(Assignment.teacher_id == current_user.id)
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
            .all()
        )
        received = (
            db.query(Message)
            .filter(Message.receiver_id == current_user.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .all()
        )
        recent_messages = (
            db.query(func.count(Message.id))
            .filter(
                or_(Message.sender_id == current_user.id, Message.receiver_id == current_user.id),
                Message.created_at >= since,
            )
            .scalar()
            or 0
        )
        total_teachers = db.query(func.count(User.id)).filter(User.role == 'teacher').scalar() or 0

        student_ids = {student.id for course in courses for student in course.students}
        if student_ids:
            total_students = len(student_ids)
        else:
            # Nothing enrolled yet: show the platform's student count.
            total_students = db.query(func.count(User.id)).filter(User.role == 'student').scalar() or 0
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    submissions = [submission for assignment in assignments for submission in assignment.submissions]
    recent_assignments = sum(1 for assignment in assignments if assignment.created_at and assignment.created_at >= since)

    activities = [
        {
            'type': 'assignment',
            'id': assignment.id,
            'title': f'Created: {assignment.title}',
            'description': _excerpt(assignment.description),
            'created_at': assignment.created_at,
        }
        for assignment in assignments[:5]
    ]
    for assignment in assignments:
        for submission in assignment.submissions[:3]:
            activities.append(
                {
                    'type': 'submission',
                    'id': submission.id,
                    'title': f'Submission on {assignment.title}',
                    'description': 'Student submitted work',
                    'created_at': submission.submitted_at,
                }
            )
    for message in received[:5]:
        activities.append(
            {
                'type': 'message',
                'id': message.id,
                'title': 'New message received',
                'description': _excerpt(message.content),
                'created_at': message.created_at,
            }
        )
    activities.sort(key=lambda item: item['created_at'] or datetime.min, reverse=True)

    active = [course for course in courses if course.is_active is not False]
    return {
        'teacher_id': current_user.id,
        'stats': {
            'total_students': total_students,
            'active_courses': len(active),
            'total_assignments': len(assignments),
            'total_submissions': len(submissions),
            'pending_submissions': sum(1 for submission in submissions if not submission.is_graded),
            'activity_rate': activity_rate(recent_assignments, recent_messages),
            'unread_messages': sum(1 for message in received if not message.is_read),
            'total_teachers': total_teachers,
        },
        'courses': [
            {
                'id': course.id,
                'title': course.title,
                'description': course.description,
                'subject': course.subject,
                'grade': course.grade,
                'student_count': len(course.students),
                'is_active': course.is_active,
                'zoom_link': course.zoom_link,
                'created_at': course.created_at,
            }
            for course in courses
        ],
        'recent_activities': activities[:10],
        'upcoming_lessons': [
            {
                'id': course.id,
                'title': course.title,
                'grade': course.grade or 'All Grades',
                'subject': course.subject or 'Course',
                'schedule_time': course.schedule_time,
                'online': bool(course.zoom_link),
                'zoom_link': course.zoom_link,
            }
            for course in active[:5]
        ],
    }


@router.get('/student')
def get_student_dashboard(current_user: User = Depends(require_roles('student')), db: Session = Depends(get_db)):
    now = datetime.now()
    today = datetime.combine(now.date(), time.min)

    try:
        course_query = db.query(Course).filter(Course.is_active.is_(True))
        grade_condition = student_grade_clause(Course.grade, current_user)
        if grade_condition is not None:
            course_query = course_query.filter(grade_condition)
        courses = course_query.order_by(Course.created_at.desc(), Course.id.desc()).all()

        enrolled = enrolled_courses(db, current_user)
        assignments = assignments_for_student(db, current_user, [course.id for course in enrolled])
        unread_messages = (
            db.query(func.count(Message.id))
            .filter(Message.receiver_id == current_user.id, Message.is_read.is_(False))
            .scalar()
            or 0
        )
        notifications = (
            db.query(Notification)
            .filter(Notification.user_id == current_user.id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(20)
            .all()
        )
        unread_notifications = (
            db.query(func.count(Notification.id))
            .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
            .scalar()
            or 0
        )
        submissions = {
            submission.assignment_id: submission
            for submission in db.query(Submission).filter(Submission.student_id == current_user.id).all()
        }
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    pending = [a for a in assignments if a.id not in submissions and a.due_date >= now]
    overdue = [a for a in assignments if a.id not in submissions and a.due_date < now]
    graded = [s for s in submissions.values() if s.is_graded and s.grade is not None]

    def assignment_item(assignment: Assignment) -> dict:
        submission = submissions.get(assignment.id)
        return {
            'id': assignment.id,
            'title': assignment.title,
            'due_date': assignment.due_date,
            'course_title': assignment.course.title if assignment.course else None,
            'points': assignment.points,
            'has_submitted': submission is not None,
            'is_graded': bool(submission and submission.is_graded),
            'grade': submission.grade if submission else None,
        }

    activities = [
        {
            'type': 'assignment',
            'id': assignment.id,
            'title': assignment.title,
            'description': f'Due: {assignment.due_date:%Y-%m-%d}',
            'created_at': assignment.created_at,
        }
        for assignment in assignments[:5]
    ] + [
        {
            'type': 'notification',
            'id': notification.id,
            'title': notification.title,
            'description': notification.message,
            'created_at': notification.created_at,
            'is_read': notification.is_read,
        }
        for notification in notifications[:5]
    ]
    activities.sort(key=lambda item: item['created_at'] or datetime.min, reverse=True)

    return {
        'student_id': current_user.id,
        'student_name': current_user.full_name,
        'stats': {
            'total_courses': len(courses),
            'enrolled_courses': len(enrolled),
            'total_assignments': len(assignments),
            'pending_assignments': len(pending),
            'overdue_assignments': len(overdue),
            'submitted_assignments': len(submissions),
            'graded_assignments': len(graded),
            'average_grade': round(sum(s.grade for s in graded) / len(graded), 1) if graded else None,
            'unread_messages': unread_messages,
            'unread_notifications': unread_notifications,
        },
        'courses': [
            {
                'id': course.id,
                'title': course.title,
                'subject': course.subject,
                'grade': course.grade,
                'teacher_name': course.teacher.full_name if course.teacher else None,
                'is_enrolled': course.has_student(current_user.id),
            }
            for course in courses[:6]
        ],
        'assignments': [assignment_item(assignment) for assignment in assignments[:6]],
        'today_schedule': [
            assignment_item(assignment)
            for assignment in assignments
            if today <= assignment.due_date < today + timedelta(days=1)
        ],
        'recent_activities': activities[:10],
    }


@router.get('/parent')
def get_parent_dashboard(current_user: User = Depends(require_roles('parent')), db: Session = Depends(get_db)):
    try:
        children = list(current_user.children)
        notifications = (
            db.query(Notification)
            .filter(Notification.user_id == current_user.id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(20)
            .all()
        )
        unread_notifications = (
            db.query(func.count(Notification.id))
            .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
            .scalar()
            or 0
        )
        unread_messages = (
            db.query(func.count(Message.id))
            .filter(Message.receiver_id == current_user.id, Message.is_read.is_(False))
            .scalar()
            or 0
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return {
        'parent_id': current_user.id,
        'parent_name': current_user.full_name,
        'stats': {
            'unread_messages': unread_messages,
            'unread_notifications': unread_notifications,
            'total_children': len(children),
        },
        'children': [
            {
                'id': child.id,
                'first_name': child.first_name,
                'last_name': child.last_name,
                'email': child.email,
                'student_type': child.student_type,
                'school_grade': child.school_grade,
                'university_major': child.university_major,
                'profile_image': child.profile_image,
                'avg_score': child.avg_score or 0,
            }
            for child in children
        ],
        'recent_activities': [
            {
                'type': 'notification',
                'id': notification.id,
                'title': notification.title,
                'description': notification.message,
                'created_at': notification.created_at,
                'is_read': notification.is_read,
            }
            for notification in notifications[:10]
        ],
    }
