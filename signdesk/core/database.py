# =====================================================
# FILE: signdesk/core/database.py
# Database Connection and Session Management
# =====================================================

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import logging

from signdesk.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.
    SQLite connections are shared across worker threads, so the
    same-thread check is disabled and writers wait on the lock.
    """
    engine_args = {
        "pool_pre_ping": settings.DB_POOL_PRE_PING,
        "echo": echo,
    }

    if database_url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False, "timeout": 30}

    return create_engine(database_url, **engine_args)


# Create database engine
try:
    engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
except Exception as e:
    logger.error(f"Failed to create database engine: {str(e)}")
    raise

# Create SessionLocal class
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

# Create Base class for models
Base = declarative_base()


# Dependency to get DB session
def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


def test_connection() -> bool:
    """
    Test database connection
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"Database connection test failed: {str(e)}")
        return False


def init_db(bind: Engine = None):
    """
    Create all tables in the database
    """
    # Importing the models registers them (and their listeners) on Base
    import signdesk.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {str(e)}")
        raise
