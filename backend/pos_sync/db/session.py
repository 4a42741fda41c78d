"""Database engine and session dependencies."""

from collections.abc import Callable, Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pos_sync.core.config import settings

connect_args = {}
pool_config = {"pool_pre_ping": True}

if settings.database_url.startswith("sqlite"):
    # Sessions are handed across the event loop's worker threads
    connect_args = {"check_same_thread": False}
else:
    pool_config.update(
        {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 3600,
        }
    )

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=False,
    **pool_config,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Factory for work that needs one session per client, such as bulk syncs."""
    return SessionLocal


DbSession = Annotated[Session, Depends(get_db)]
SessionFactory = Annotated[Callable[[], Session], Depends(get_session_factory)]
