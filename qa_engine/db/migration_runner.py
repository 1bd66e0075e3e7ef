"""
Migration Runner - Applies pending Alembic migrations at application startup.
"""

import logging
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from qa_engine.config import settings

logger = logging.getLogger(__name__)

# alembic.ini lives at the project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def sync_database_url(url: str | None = None) -> str:
    """
    Synchronous URL for Alembic.

    Alembic's command API is synchronous, so asyncpg URLs are rewritten to
    psycopg2.
    """
    return (url or settings.database_url).replace("asyncpg", "psycopg2")


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> None:
    """
    Upgrade the schema to head if any migrations are pending.

    Raises:
        RuntimeError: A migration failed; the app must not start
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("Alembic config not found at %s, skipping migrations", ALEMBIC_INI_PATH)
        return

    try:
        alembic_cfg = Config(str(ALEMBIC_INI_PATH))
        sync_url = sync_database_url()
        alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))

        engine = create_engine(sync_url)
        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info("Database schema is up to date (revision: %s)", current)
                return

            logger.info("Running migrations from %s to %s", current, head)
            command.upgrade(alembic_cfg, "head")
            logger.info(
                "Migrations complete. Database now at revision: %s",
                _get_current_revision(engine),
            )
        finally:
            engine.dispose()

    except Exception as e:
        logger.error("Migration failed: %s", e)
        raise RuntimeError(f"Database migration failed: {e}") from e
