"""Database connection and session management."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kiosk.models import Base


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine (SQLite uses StaticPool so threads share one connection)."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create state tables if they do not exist."""
    Base.metadata.create_all(bind=engine)


__all__ = ["create_db_engine", "create_session_factory", "init_db"]
