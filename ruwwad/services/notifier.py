"""Fan-out helpers that write Notification rows.

Notifications are a side effect of the action that triggers them, so every
helper here is best-effort: failures are logged and the caller's own change
has already been committed.
"""

import logging
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.core import config
from ruwwad.models.notification import Notification
from ruwwad.models.user import User

logger = logging.getLogger(__name__)


def find_admin(db: Session) -> User | None:
    admin = db.query(User).filter(func.lower(User.email) == config.ADMIN_EMAIL).first()
    if admin is not None:
        return admin
    return db.query(User).filter(User.role == "admin").order_by(User.id.asc()).first()


def notify_users(
    db: Session,
    user_ids: Iterable[int],
    title: str,
    message: str | None,
    notification_type: str = "other",
) -> int:
    unique_ids = list(dict.fromkeys(user_id for user_id in user_ids if user_id is not None))
    if not unique_ids:
        return 0
    try:
        db.add_all(
            [
                Notification(user_id=user_id, title=title, message=message, type=notification_type, is_read=False)
                for user_id in unique_ids
            ]
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create %s notifications for %d users", notification_type, len(unique_ids))
        return 0
    return len(unique_ids)


def notify_admin(db: Session, title: str, message: str | None, notification_type: str = "system") -> bool:
    try:
        admin = find_admin(db)
    except SQLAlchemyError:
        logger.exception("Failed to look up the admin account")
        return False
    if admin is None:
        logger.info("No admin account found, skipping notification %r", title)
        return False
    return notify_users(db, [admin.id], title, message, notification_type) == 1
