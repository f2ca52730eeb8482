"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # TestClient and the stream poller touch the DB from worker threads
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and run startup tasks.

    Schema is managed by Alembic migrations; tables are only auto-created
    when DEBUG is on.

    Startup order:
    1. Preflight check (validates DB connectivity)
    2. Verify schema exists
    3. Bootstrap admin if ADMIN_BOOTSTRAP_* env vars set and no users exist
    4. Seed demo data ONLY if SEED_DEMO=true
    """
    from sqlalchemy import inspect

    from app.db.preflight import run_db_preflight
    run_db_preflight()

    from app.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['users', 'vendors', 'evaluations', 'admin_settings']

    missing = [t for t in required_tables if t not in existing_tables]
    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run 'alembic upgrade head'.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    bootstrap_admin()

    if settings.SEED_DEMO:
        from app.db.seed import seed_demo_data
        seed_demo_data()


def bootstrap_admin():
    """
    Bootstrap the initial admin user from environment variables.

    Only runs when ADMIN_BOOTSTRAP_EMAIL/PASSWORD are set and no users exist.
    """
    from app.db.models import User, Evaluator, ApprovalStatus
    from app.core.rbac import Role
    from app.core.security import get_password_hash

    email = settings.ADMIN_BOOTSTRAP_EMAIL
    password = settings.ADMIN_BOOTSTRAP_PASSWORD

    if not email or not password:
        logger.info("Admin bootstrap: ADMIN_BOOTSTRAP_EMAIL/PASSWORD not set. Skipping.")
        return

    if len(password) < 10:
        logger.warning("ADMIN_BOOTSTRAP_PASSWORD must be at least 10 characters. Skipping bootstrap.")
        return

    with get_db_context() as db:
        if db.query(User).first():
            logger.info("Admin bootstrap: users already exist. Skipping bootstrap.")
            return

        admin = User(
            email=email,
            hashed_password=get_password_hash(password),
            name="Administrator",
            role=Role.ADMIN.value,
            approval_status=ApprovalStatus.APPROVED.value,
            can_access_chat=True,
            can_make_direct_decision=True,
            can_print_reports=True,
            can_export_data=True,
        )
        db.add(admin)
        db.flush()
        db.add(Evaluator(user_id=admin.id, name=admin.name, email=admin.email, role=Role.ADMIN.value))

    logger.info(f"Bootstrap admin created: {email}")
