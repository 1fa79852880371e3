"""Database configuration and session management."""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from enclave.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str, replica: bool = False) -> Engine:
    """Create an engine configured for the database type in `url`."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite must share one connection or every session sees an empty database
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    # PostgreSQL config (production)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5 if replica else 10,
        max_overflow=10,
        pool_timeout=5,
    )


class Database:
    """
    Primary plus optional read replica.

    All writes go to the primary. Reads that tolerate staleness go to the
    replica when one is configured, otherwise the primary is reused.
    """

    def __init__(self, primary: Engine, replica: Optional[Engine] = None):
        self.primary = primary
        self.replica = replica
        self._primary_sessions = sessionmaker(autocommit=False, autoflush=False, bind=primary)
        self._replica_sessions = (
            sessionmaker(autocommit=False, autoflush=False, bind=replica)
            if replica is not None else self._primary_sessions
        )

    @classmethod
    def from_urls(cls, primary_url: str, replica_url: Optional[str] = None) -> "Database":
        replica = make_engine(replica_url, replica=True) if replica_url else None
        return cls(make_engine(primary_url), replica)

    def create_schema(self) -> None:
        """Create all tables. Safe to call multiple times."""
        # Import models to register them with SQLAlchemy Base
        from enclave.models import audit, domain  # noqa: F401

        try:
            Base.metadata.create_all(bind=self.primary)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"schema creation failed: {exc}") from exc
        logger.info("Database schema ready")

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Session on the primary that commits on success and rolls back on failure.

        Storage errors surface as StorageUnavailable.
        """
        session = self._primary_sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageUnavailable(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Read-only session, served from the replica when present."""
        session = self._replica_sessions()
        try:
            yield session
        except SQLAlchemyError as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            session.close()

    def close(self) -> None:
        self.primary.dispose()
        if self.replica is not None:
            self.replica.dispose()
