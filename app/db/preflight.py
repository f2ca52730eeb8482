"""
Database preflight check to ensure connectivity before starting the application.
"""
import sys
import time
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("db_preflight")


def run_db_preflight(retries: int = 5, delay: int = 2):
    """
    Connect to the database and run a trivial query, retrying while the
    server comes up. Exits the process when the database stays unreachable.
    """
    from app.db.session import engine

    db_url = settings.DATABASE_URL
    safe_url = db_url.split("@")[-1] if "@" in db_url else db_url.split("://")[0]
    logger.info(f"Running DB preflight check against: {safe_url}")

    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return True
        except OperationalError as e:
            err_msg = str(e)

            if "password authentication failed" in err_msg.lower():
                logger.error(
                    f"FATAL: database authentication failed for user {settings.POSTGRES_USER} "
                    f"on {settings.POSTGRES_DB}. Check POSTGRES_* / DATABASE_URL."
                )
                sys.exit(1)

            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                logger.error(f"CRITICAL: Could not connect to database after {retries} attempts: {err_msg}")
                sys.exit(1)


if __name__ == "__main__":
    run_db_preflight()
