from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from ruwwad.core import config


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_index_lock = Lock()
_indexes_checked = False

INDEX_STATEMENTS = {
    'notifications': [
        'CREATE INDEX IF NOT EXISTS idx_notifications_user_read ON notifications(user_id, is_read)',
        'CREATE INDEX IF NOT EXISTS idx_notifications_user_created ON notifications(user_id, created_at)',
    ],
    'messages': [
        'CREATE INDEX IF NOT EXISTS idx_messages_sender_receiver ON messages(sender_id, receiver_id)',
        'CREATE INDEX IF NOT EXISTS idx_messages_receiver_read ON messages(receiver_id, is_read)',
    ],
    'assignments': [
        'CREATE INDEX IF NOT EXISTS idx_assignments_teacher_due ON assignments(teacher_id, due_date)',
        'CREATE INDEX IF NOT EXISTS idx_assignments_grade ON assignments(grade)',
    ],
    'courses': [
        'CREATE INDEX IF NOT EXISTS idx_courses_teacher_created ON courses(teacher_id, created_at)',
        'CREATE INDEX IF NOT EXISTS idx_courses_grade ON courses(grade)',
    ],
    'users': [
        'CREATE INDEX IF NOT EXISTS idx_users_role_created ON users(role, created_at)',
    ],
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_indexes(bind=None) -> None:
    global _indexes_checked

    if _indexes_checked:
        return

    with _index_lock:
        if _indexes_checked:
            return

        bind = bind or engine
        existing_tables = set(inspect(bind).get_table_names())

        with bind.begin() as connection:
            for table_name, statements in INDEX_STATEMENTS.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _indexes_checked = True
