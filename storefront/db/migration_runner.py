"""
Migration Runner - Applies pending Alembic migrations at startup.

Enabled with RUN_MIGRATIONS_ON_STARTUP; otherwise run `alembic upgrade head`
as a deploy step.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from storefront.config import settings

logger = get_logger(__name__)

ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def _get_sync_database_url() -> str:
    """Alembic's command API is synchronous; swap asyncpg for psycopg2."""
    return settings.database_url.replace("+asyncpg", "+psycopg2")


def _alembic_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", _get_sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    return ScriptDirectory.from_config(alembic_cfg).get_current_head()


def check_migrations_status() -> MigrationStatus:
    """Read current and head revisions without applying anything."""
    alembic_cfg = _alembic_config()
    engine = create_engine(_get_sync_database_url())
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Raises:
        RuntimeError: If a migration fails; the app must not start on a stale schema
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        status = check_migrations_status()
        if not status.pending:
            logger.info("database_schema_up_to_date", revision=status.current_revision)
            return

        logger.info(
            "running_migrations",
            from_revision=status.current_revision,
            to_revision=status.head_revision,
        )
        command.upgrade(_alembic_config(), "head")
        logger.info("migrations_complete", revision=status.head_revision)

    except Exception as exc:
        logger.error("migration_failed", error=str(exc), exc_info=True)
        raise RuntimeError(f"Database migration failed: {exc}") from exc
