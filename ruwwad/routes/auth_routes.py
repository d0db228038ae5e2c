import logging
import re
import secrets
from datetime import datetime, timedelta
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx
import jwt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruwwad.auth import jwt_handler, oauth
from ruwwad.auth.dependencies import get_current_user
from ruwwad.auth.passwords import hash_password, verify_password
from ruwwad.core import config
from ruwwad.core.errors import database_unavailable
from ruwwad.database import get_db
from ruwwad.models.user import (
    SCHOOL_GRADES,
    SIGNUP_ROLES,
    STUDENT_TYPES,
    TRAINING_FIELDS,
    UNIVERSITY_MAJORS,
    User,
)
from ruwwad.routes.user_routes import MIN_PASSWORD_LENGTH, UserResponse
from ruwwad.services import mailer, notifier

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^\S+@\S+\.\S+$')
OAUTH_STATE_MINUTES = 10


def generate_code() -> str:
    return f'{secrets.randbelow(900000) + 100000}'


def normalize_email(value: str) -> str:
    normalized = (value or '').strip().lower()
    if not normalized:
        raise ValueError('Email is required.')
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Valid email is required.')
    return normalized


class SignupRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    confirm_password: str
    role: str
    student_type: str | None = None
    school_grade: str | None = None
    university_major: str | None = None
    training_field: str | None = None

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str, info) -> str:
        normalized = value.strip()
        label = 'First name' if info.field_name == 'first_name' else 'Last name'
        if not normalized:
            raise ValueError(f'{label} is required.')
        if len(normalized) > 50:
            raise ValueError(f'{label} must be 50 characters or fewer.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value:
            raise ValueError('Password is required.')
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SIGNUP_ROLES:
            raise ValueError('Invalid role.')
        return normalized

    @field_validator('student_type', 'school_grade', 'university_major', 'training_field')
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode='after')
    def validate_role_fields(self):
        if self.password != self.confirm_password:
            raise ValueError('Passwords do not match.')

        if self.role == 'student':
            if not self.student_type:
                raise ValueError('Student type is required for students.')
            if self.student_type not in STUDENT_TYPES:
                raise ValueError('Invalid student type.')
            if self.student_type == 'school':
                if not self.school_grade:
                    raise ValueError('School grade is required for school students.')
                if self.school_grade not in SCHOOL_GRADES:
                    raise ValueError('Invalid school grade.')
                self.university_major = None
            else:
                if not self.university_major:
                    raise ValueError('University major is required for university students.')
                if self.university_major not in UNIVERSITY_MAJORS:
                    raise ValueError('Invalid university major.')
                self.school_grade = None
            self.training_field = None
        elif self.role == 'trainee':
            if not self.training_field:
                raise ValueError('Training field is required for trainees.')
            if self.training_field not in TRAINING_FIELDS:
                raise ValueError('Invalid training field.')
            self.student_type = self.school_grade = self.university_major = None
        else:
            self.student_type = self.school_grade = self.university_major = self.training_field = None

        return self


class VerifyEmailRequest(BaseModel):
    email: str
    code: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    email: str = ''
    password: str = ''


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class ResetPasswordRequest(BaseModel):
    email: str
    code: str
    new_password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value


class TokenResponse(BaseModel):
    status: str = 'success'
    token: str
    token_type: str = 'bearer'
    user_id: int
    role: str
    redirect: str
    user: UserResponse


def build_token_response(user: User) -> TokenResponse:
    return TokenResponse(
        token=jwt_handler.create_token_for_user(user),
        user_id=user.id,
        role=user.role,
        redirect=jwt_handler.dashboard_path_for_role(user.role),
        user=UserResponse.model_validate(user),
    )


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(func.lower(User.email) == email).first()


def code_is_valid(user: User, code: str) -> bool:
    if not user.verification_code or not code:
        return False
    if user.verification_expires_at and user.verification_expires_at < datetime.now():
        return False
    return secrets.compare_digest(user.verification_code, code.strip())


def issue_code(user: User) -> str:
    code = generate_code()
    user.verification_code = code
    user.verification_expires_at = datetime.now() + timedelta(minutes=config.VERIFICATION_CODE_TTL_MINUTES)
    return code


@router.post('/signup', status_code=status.HTTP_201_CREATED)
def signup(data: SignupRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    try:
        if find_user_by_email(db, data.email):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email already registered')

        user = User(
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            hashed_password=hash_password(data.password),
            role=data.role,
            student_type=data.student_type,
            school_grade=data.school_grade,
            university_major=data.university_major,
            training_field=data.training_field,
            is_verified=False,
        )
        code = issue_code(user)
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Registered %s user %s', user.role, user.id)
    notifier.notify_admin(db, 'New user registered', f'New {user.role} user: {user.full_name} ({user.email})')
    background_tasks.add_task(mailer.send_verification_code, user.email, user.first_name, code)

    return {
        'message': 'User registered, please check your email for verification code',
        'user_id': user.id,
    }


@router.post('/verify-email')
def verify_email(data: VerifyEmailRequest, db: Session = Depends(get_db)):
    try:
        user = find_user_by_email(db, data.email)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')
        if user.is_verified:
            return {'message': 'Email already verified.'}
        if not code_is_valid(user, data.code):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid verification code.')

        user.is_verified = True
        user.verification_code = None
        user.verification_expires_at = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'Email verified successfully!'}


@router.post('/resend-verification')
def resend_verification(data: ForgotPasswordRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    try:
        user = find_user_by_email(db, data.email)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')
        if user.is_verified:
            return {'message': 'Email already verified.'}
        code = issue_code(user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(mailer.send_verification_code, user.email, user.first_name, code)
    return {'message': 'Verification code sent.'}


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    email = data.email.strip().lower()
    if not email or not data.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Please provide email and password')

    try:
        user = find_user_by_email(db, email)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='User not found!')
    if not user.is_verified:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Email not verified. Please verify your email before logging in.',
        )
    if not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Wrong password!')
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is deactivated')

    logger.info('User %s logged in', user.id)
    return build_token_response(user)


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get('/verify-token')
def verify_token(current_user: User = Depends(get_current_user)):
    return {
        'valid': True,
        'user_id': current_user.id,
        'role': current_user.role,
        'redirect': jwt_handler.dashboard_path_for_role(current_user.role),
    }


@router.post('/refresh-token', response_model=TokenResponse)
def refresh_token(current_user: User = Depends(get_current_user)):
    return build_token_response(current_user)


@router.post('/forgot-password')
def forgot_password(data: ForgotPasswordRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    try:
        user = find_user_by_email(db, data.email)
        if user is not None:
            code = issue_code(user)
            db.commit()
            background_tasks.add_task(mailer.send_password_reset_code, user.email, user.first_name, code)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return {'message': 'If an account exists for this email, a reset code has been sent.'}


@router.post('/reset-password')
def reset_password(data: ResetPasswordRequest, db: Session = Depends(get_db)):
    try:
        user = find_user_by_email(db, data.email)
        if user is None or not code_is_valid(user, data.code):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid or expired reset code.')

        user.hashed_password = hash_password(data.new_password)
        user.verification_code = None
        user.verification_expires_at = None
        # Receiving the code proves ownership of the address.
        user.is_verified = True
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('User %s reset their password', user.id)
    return {'message': 'Password reset successfully.'}


def create_oauth_state(provider_name: str) -> str:
    return jwt_handler.create_access_token(
        subject=secrets.token_urlsafe(16),
        email='',
        role=f'oauth:{provider_name}',
        expires_minutes=OAUTH_STATE_MINUTES,
    )


def verify_oauth_state(state: str | None, provider_name: str) -> None:
    try:
        payload = jwt_handler.decode_access_token(state or '')
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid OAuth state') from exc
    if payload.get('role') != f'oauth:{provider_name}':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid OAuth state')


def link_oauth_user(db: Session, provider_name: str, profile: dict) -> User:
    email = profile.get('email')
    subject = profile.get('subject')
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email not provided by OAuth provider')

    try:
        user = None
        if subject:
            user = (
                db.query(User)
                .filter(User.oauth_provider == provider_name, User.oauth_subject == subject)
                .first()
            )
        if user is None:
            # Matching by email needs a provider-verified address.
            if not profile.get('email_verified'):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email not verified by provider')
            user = find_user_by_email(db, email)
        if user is None:
            user = User(
                first_name=(profile.get('first_name') or email.split('@')[0])[:50],
                last_name=(profile.get('last_name') or '')[:50],
                email=email,
                hashed_password='',
                role='student',
                profile_image=profile.get('picture'),
                is_verified=True,
                oauth_provider=provider_name,
                oauth_subject=subject or None,
            )
            db.add(user)
            created = True
        else:
            user.oauth_provider = user.oauth_provider or provider_name
            user.oauth_subject = user.oauth_subject or subject
            user.is_verified = True
            created = False
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    if created:
        notifier.notify_admin(db, 'New user registered', f'New student user via {provider_name}: {user.full_name} ({email})')
    return user


@router.get('/oauth/{provider_name}/login')
def oauth_login(provider_name: str):
    provider = oauth.get_provider(provider_name)
    return RedirectResponse(url=provider.get_authorization_url(create_oauth_state(provider.name)))


@router.get('/oauth/{provider_name}/callback')
async def oauth_callback(
    provider_name: str,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    provider = oauth.get_provider(provider_name)
    if error or not code:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f'{provider.name.title()} login was cancelled')
    verify_oauth_state(state, provider.name)

    try:
        tokens = await provider.exchange_code(code)
        profile = await provider.get_profile(tokens.get('access_token', ''))
    except httpx.HTTPError as exc:
        logger.warning('%s OAuth exchange failed: %s', provider.name, exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f'{provider.name.title()} authentication failed',
        ) from exc

    user = link_oauth_user(db, provider.name, profile)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is deactivated')

    response = build_token_response(user)
    if config.FRONTEND_OAUTH_REDIRECT_URL:
        parsed = urlparse(config.FRONTEND_OAUTH_REDIRECT_URL)
        query = dict(parse_qsl(parsed.query))
        query.update({'access_token': response.token, 'token_type': 'bearer', 'redirect': response.redirect})
        redirect_url = urlunparse(parsed._replace(query=urlencode(query)))
        return RedirectResponse(url=redirect_url)
    return response
