from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from campaign_ledger.config import DATABASE_URL

# Allow overriding database via environment (see config.DATABASE_URL).
SQLALCHEMY_DATABASE_URL = DATABASE_URL

_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class Base(DeclarativeBase):
	pass


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
	"""Run a unit of work: commit on success, roll back every write on failure."""
	try:
		yield session
		session.commit()
	except Exception:
		session.rollback()
		raise
