from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest

from ruwwad.auth import jwt_handler
from ruwwad.core import config


@pytest.mark.parametrize(
    ('role', 'expected_path'),
    [
        ('student', '/home/student'),
        ('teacher', '/home/teacher'),
        ('parent', '/home/parent'),
        ('trainee', '/home/trainee'),
        ('admin', '/home/admin'),
        (' Teacher ', '/home/teacher'),
        ('janitor', '/home'),
        ('', '/home'),
        (None, '/home'),
    ],
)
def test_dashboard_path_for_role(role, expected_path: str) -> None:
    assert jwt_handler.dashboard_path_for_role(role) == expected_path


def test_token_for_user_carries_identity_claims() -> None:
    user = SimpleNamespace(id=7, email='teacher@example.com', role='teacher')

    claims = jwt_handler.decode_access_token(jwt_handler.create_token_for_user(user))

    assert claims['sub'] == '7'
    assert claims['email'] == 'teacher@example.com'
    assert claims['role'] == 'teacher'
    assert claims['exp'] - claims['iat'] == config.JWT_EXPIRES_MINUTES * 60


def test_decode_access_token_rejects_foreign_signature() -> None:
    token = jwt.encode({'sub': '1', 'role': 'admin'}, 'some-other-secret', algorithm='HS256')

    with pytest.raises(jwt.PyJWTError):
        jwt_handler.decode_access_token(token)


def test_get_token_role_reads_legacy_user_type_claim() -> None:
    token = jwt.encode({'sub': '1', 'userType': 'parent'}, 'any-secret', algorithm='HS256')

    assert jwt_handler.get_token_role(token) == 'parent'


@pytest.mark.parametrize('token', [None, '', 'not-a-token'])
def test_get_token_role_returns_none_for_unusable_tokens(token) -> None:
    assert jwt_handler.get_token_role(token) is None


def test_is_token_expired_compares_exp_to_now() -> None:
    token = jwt_handler.create_access_token('1', 'a@example.com', 'student', expires_minutes=5)
    now = datetime.now(timezone.utc)

    assert jwt_handler.is_token_expired(token, now=now) is False
    assert jwt_handler.is_token_expired(token, now=now + timedelta(minutes=10)) is True


@pytest.mark.parametrize('token', [None, '', 'garbage'])
def test_is_token_expired_treats_unusable_tokens_as_expired(token) -> None:
    assert jwt_handler.is_token_expired(token) is True


def test_is_token_expired_without_exp_claim() -> None:
    token = jwt.encode({'sub': '1', 'role': 'student'}, 'any-secret', algorithm='HS256')

    assert jwt_handler.is_token_expired(token) is True
