from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from rockid.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create the engine for either SQLite (local/tests) or PostgreSQL."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

    engine = create_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )

    @event.listens_for(engine, "connect")
    def set_statement_timeout(dbapi_connection, connection_record):
        """Cap query time so a stuck transaction cannot hold row locks indefinitely."""
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SET statement_timeout = '30s'")
        except Exception as e:
            logger.warning(f"Could not set statement timeout: {e}")
        finally:
            cursor.close()

    return engine


engine = build_engine(settings.DATABASE_URL)


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Register table metadata
    import rockid.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
