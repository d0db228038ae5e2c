import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('BCRYPT_ROUNDS', '4')
os.environ.setdefault('ADMIN_EMAIL', 'admin@ruwwad.test')

from ruwwad.auth.jwt_handler import create_token_for_user  # noqa: E402
from ruwwad.auth.passwords import hash_password  # noqa: E402
from ruwwad.database import Base  # noqa: E402
from ruwwad.models import (  # noqa: E402,F401
    assignment,
    course,
    feedback,
    message,
    notification,
    system_settings,
    user,
)
from ruwwad.models.user import User  # noqa: E402

DEFAULT_PASSWORD = 'secret123'


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    counter = {'value': 0}

    def factory(role: str = 'student', email: str | None = None, password: str = DEFAULT_PASSWORD, **fields) -> User:
        counter['value'] += 1
        number = counter['value']
        if role == 'student' and 'student_type' not in fields:
            fields.setdefault('student_type', 'school')
            fields.setdefault('school_grade', 'grade10')
        new_user = User(
            first_name=fields.pop('first_name', f'{role.title()}{number}'),
            last_name=fields.pop('last_name', 'Tester'),
            email=email or f'{role}{number}@example.com',
            hashed_password=hash_password(password),
            role=role,
            is_verified=fields.pop('is_verified', True),
            **fields,
        )
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
        return new_user

    return factory


@pytest.fixture
def admin(make_user) -> User:
    return make_user('admin', email='admin@ruwwad.test', first_name='Platform', last_name='Admin')


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from ruwwad.database import get_db
    from ruwwad.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def build(target: User) -> dict:
        return {'Authorization': f'Bearer {create_token_for_user(target)}'}

    return build
