import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ruwwad.core import config
from ruwwad.core.errors import install_error_handlers
from ruwwad.create_admin import ensure_admin
from ruwwad.database import Base, SessionLocal, engine, ensure_indexes
from ruwwad.models import assignment, course, feedback, message, notification, system_settings, user  # noqa: F401
from ruwwad.routes import (
    assignment_routes,
    auth_routes,
    course_routes,
    dashboard_routes,
    feedback_routes,
    message_routes,
    notification_routes,
    settings_routes,
    user_routes,
)

config.configure_logging()
config.validate_runtime_config()

app = FastAPI(title='RUWWAD API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
install_error_handlers(app)

logger = logging.getLogger(__name__)


def seed_admin() -> None:
    """Create the ADMIN_EMAIL account on first start when ADMIN_PASSWORD is set."""
    if not config.ADMIN_PASSWORD:
        return
    db = SessionLocal()
    try:
        exists = db.query(user.User.id).filter(func.lower(user.User.email) == config.ADMIN_EMAIL).first()
        if exists is None:
            admin, _ = ensure_admin(db, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
            logger.info('Created admin account %s', admin.email)
    finally:
        db.close()


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_indexes()
        seed_admin()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'RUWWAD API Running'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(user_routes.router, prefix='/api/users')
app.include_router(course_routes.router, prefix='/api/courses')
app.include_router(assignment_routes.router, prefix='/api/assignments')
app.include_router(message_routes.router, prefix='/api/messages')
app.include_router(notification_routes.router, prefix='/api/notifications')
app.include_router(feedback_routes.router, prefix='/api/feedback')
app.include_router(settings_routes.router, prefix='/api/system-settings')
app.include_router(dashboard_routes.router, prefix='/api/dashboard')


def run() -> None:
    uvicorn.run('ruwwad.main:app', host=config.HOST, port=config.PORT, reload=config.RELOAD)


if __name__ == '__main__':
    run()
