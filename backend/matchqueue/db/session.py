"""
Database engine and session factory configuration.
"""

import os

import sqlalchemy
from sqlalchemy import orm

DATABASE_URL = os.getenv(
    "DATABASE_URL", "postgresql://postgres:postgres@db:5432/matchqueue"
)

engine = sqlalchemy.create_engine(DATABASE_URL, pool_pre_ping=True)

# Queue entries are handed to the notification fan-out after commit, so
# instances must stay readable once the transaction is closed.
SessionLocal = orm.sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)


def get_db():
    """Yield a database session and close it when the request ends."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
