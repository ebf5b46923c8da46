from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from ..config import get_settings

settings = get_settings()

engine = create_engine(settings.database_url, future=True, echo=False, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
Base = declarative_base()


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run the block as one atomic unit and commit it.

    Reads issued before entering autobegin a transaction, so the block then
    runs inside a savepoint and the outer transaction is committed afterwards.
    Any exception rolls the block back and propagates.
    """
    transaction_ctx = db.begin_nested() if db.in_transaction() else db.begin()
    with transaction_ctx:
        yield db
    if db.in_transaction():
        db.commit()
