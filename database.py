# database.py
"""
SQLAlchemy database connection and session management.

This module provides:
- Database engine configuration (Azure SQL by default, any SQLAlchemy URL via DATABASE_URL)
- Session factory for dependency injection
- Connection utilities

Usage:
     from database import get_session, engine

     # In FastAPI routes:
     @app.get("/leases")
     def get_leases(db: Session = Depends(get_session)):
          return db.query(Lease).all()
     """
import logging
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.build_database_url()


def _use_immediate_transactions(engine: Engine) -> None:
     """
     Make SQLite open every transaction with BEGIN IMMEDIATE.

     pysqlite defers locking until the first write, so two sessions creating a
     lease for the same unit can deadlock instead of one of them hitting the
     unique index. Taking the write lock up front serializes writers and lets
     the constraint decide the race, as it does on the server databases.
     """

     @event.listens_for(engine, "connect")
     def _disable_pysqlite_transactions(dbapi_connection, connection_record):
          dbapi_connection.isolation_level = None

     @event.listens_for(engine, "begin")
     def _begin_immediate(conn):
          conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> Engine:
     """Create an engine for ``url`` with pool settings suited to its backend."""
     if url.startswith("sqlite"):
          in_memory = url in ("sqlite://", "sqlite:///:memory:")
          engine = create_engine(
               url,
               connect_args={"check_same_thread": False, "timeout": 30},
               poolclass=StaticPool if in_memory else None,
               echo=echo,
          )
          _use_immediate_transactions(engine)
          return engine

     return create_engine(
          url,
          poolclass=QueuePool,
          pool_size=5,
          max_overflow=10,
          pool_timeout=30,
          pool_recycle=1800,  # Recycle connections after 30 minutes
          pool_pre_ping=True,
          echo=echo,
     )


# Create SQLAlchemy engine
engine = build_engine(
     DATABASE_URL,
     echo=os.getenv("SQL_ECHO", "false").lower() == "true",  # Log SQL if SQL_ECHO=true
)

# Session factory
SessionLocal = sessionmaker(
     bind=engine,
     autocommit=False,
     autoflush=False,
     expire_on_commit=False,
)


def get_session() -> Generator[Session, None, None]:
     """
     FastAPI dependency that provides a database session.

     Services commit their own units of work; anything left pending when the
     request finishes is committed here, and any exception rolls back.

     Yields:
          Session: SQLAlchemy database session
     """
     session = SessionLocal()
     try:
          yield session
          session.commit()
     except Exception:
          session.rollback()
          raise
     finally:
          session.close()


@contextmanager
def get_session_context() -> Generator[Session, None, None]:
     """
     Context manager for database sessions (for use outside FastAPI routes).

     Usage:
          with get_session_context() as db:
               LeaseService.expire_leases(db)

     Yields:
          Session: SQLAlchemy database session
     """
     session = SessionLocal()
     try:
          yield session
          session.commit()
     except Exception:
          session.rollback()
          raise
     finally:
          session.close()


def init_db() -> None:
     """
     Initialize database tables.

     Creates all tables defined in the models if they don't exist.
     For production, use Alembic migrations instead.
     """
     from models import Base
     Base.metadata.create_all(bind=engine)


def check_connection() -> bool:
     """
     Test database connectivity.

     Returns:
          bool: True if connection successful, False otherwise
     """
     try:
          with engine.connect() as conn:
               conn.execute(text("SELECT 1"))
          return True
     except Exception as e:
          logger.error("Database connection failed: %s", e)
          return False
