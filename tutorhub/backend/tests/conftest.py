import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.db.session import Base
from app.services import events

from factories import FakeRateSource, create_language, create_slot, create_teacher, create_user


def make_engine(url: str = "sqlite+pysqlite:///:memory:", **kwargs):
    """SQLite engine whose transactions take the write lock up front.

    SQLite ignores SELECT ... FOR UPDATE; BEGIN IMMEDIATE gives the same
    one-writer-at-a-time behaviour the row locks give on PostgreSQL.
    """
    engine = create_engine(url, future=True, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def session_factory():
    engine = make_engine(
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class RecordingDispatcher(events.EventDispatcher):
    def __init__(self) -> None:
        super().__init__(executor=None)
        self.published: list[events.DomainEvent] = []

    def dispatch(self, event: events.DomainEvent) -> None:
        self.published.append(event)
        super().dispatch(event)

    def of_type(self, event_type):
        return [event for event in self.published if isinstance(event, event_type)]


@pytest.fixture(autouse=True)
def dispatcher():
    recording = RecordingDispatcher()
    events.set_dispatcher(recording)
    yield recording
    events.set_dispatcher(None)


@pytest.fixture()
def teacher(db_session):
    return create_teacher(db_session)


@pytest.fixture()
def language(db_session):
    return create_language(db_session)


@pytest.fixture()
def slot(db_session, teacher, language):
    return create_slot(db_session, teacher, language)


@pytest.fixture()
def student(db_session):
    return create_user(db_session, "student@example.com", credit_balance="20.00")


@pytest.fixture()
def rate_source():
    return FakeRateSource()
