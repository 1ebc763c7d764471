"""
Database engine + session factory.

Always initializes — defaults to SQLite for local dev, Postgres in production.
get_session() always returns a real session.
"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from app.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Hosted Postgres URLs use postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

# Rows are handed back to routes and workers after the session closes
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def utcnow():
    return datetime.now(timezone.utc)
