import logging

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from tenacity import RetryError, before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from admin_sync.core.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_TRIES = 60
WAIT_SECONDS = 1


def _sync_db_url() -> str:
    return settings.database_url.replace("+asyncpg", "+psycopg2")


@retry(
    stop=stop_after_attempt(MAX_TRIES),
    wait=wait_fixed(WAIT_SECONDS),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.INFO),
)
def _ping_database() -> None:
    engine = create_engine(_sync_db_url())
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    finally:
        engine.dispose()


def check_db_connection() -> bool:
    """Ensure database is reachable before running migrations."""
    try:
        _ping_database()
    except RetryError:
        logger.error("Could not connect to the database after %s attempts.", MAX_TRIES)
        return False
    logger.info("Database connection successful.")
    return True


def run_migrations() -> None:
    """Run Alembic migrations using the local configuration."""
    logger.info("Running database migrations...")
    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("script_location", "migrations")
    alembic_cfg.set_main_option("sqlalchemy.url", _sync_db_url())
    command.upgrade(alembic_cfg, "head")
    logger.info("Migrations applied successfully.")


if __name__ == "__main__":
    if not check_db_connection():
        raise SystemExit(1)
    run_migrations()
