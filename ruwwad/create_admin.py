"""Create or promote the platform admin account.

Usage:
    python -m ruwwad.create_admin
    python -m ruwwad.create_admin --email admin@example.com --password secret123
"""
import argparse
import logging
import sys

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth.passwords import hash_password
from ruwwad.core import config
from ruwwad.database import Base, SessionLocal, engine
from ruwwad.models import assignment, course, feedback, message, notification, system_settings, user  # noqa: F401
from ruwwad.models.user import User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def ensure_admin(
    db: Session,
    email: str,
    password: str,
    first_name: str = 'Platform',
    last_name: str = 'Admin',
) -> tuple[User, bool]:
    """Return the admin user for ``email`` and whether it was newly created.

    An existing account with that email is promoted to admin and its password
    replaced.
    """
    email = email.strip().lower()
    existing = db.query(User).filter(func.lower(User.email) == email).first()
    if existing is not None:
        existing.role = 'admin'
        existing.hashed_password = hash_password(password)
        existing.is_verified = True
        existing.is_active = True
        db.commit()
        db.refresh(existing)
        return existing, False

    admin = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        hashed_password=hash_password(password),
        role='admin',
        is_verified=True,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin, True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Create or promote the RUWWAD admin account.')
    parser.add_argument('--email', default=config.ADMIN_EMAIL, help='Admin email (default: ADMIN_EMAIL)')
    parser.add_argument('--password', default=config.ADMIN_PASSWORD, help='Admin password (default: ADMIN_PASSWORD)')
    parser.add_argument('--first-name', default='Platform')
    parser.add_argument('--last-name', default='Admin')
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    config.configure_logging()
    args = parse_args(argv)

    if not args.email:
        print('An admin email is required (--email or ADMIN_EMAIL).', file=sys.stderr)
        return 1
    if len(args.password or '') < MIN_PASSWORD_LENGTH:
        print(f'The admin password must be at least {MIN_PASSWORD_LENGTH} characters.', file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        Base.metadata.create_all(bind=engine)
        admin, created = ensure_admin(db, args.email, args.password, args.first_name, args.last_name)
    except SQLAlchemyError:
        logger.exception('Could not create the admin account. Check DATABASE_URL.')
        return 1
    finally:
        db.close()

    print(f"{'Created' if created else 'Updated'} admin account {admin.email} (id {admin.id})")
    return 0


if __name__ == '__main__':
    sys.exit(main())
