import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from hallway.config.loader import get_identity_header
from hallway.database import Base, get_db
from hallway.main import app
from hallway.data.participant_manager import ParticipantManager
from hallway.data.topic_manager import TopicManager
from hallway.services.meeting_locks import MeetingLockRegistry
from hallway.services.ranking_engine import RankingEngine

# In-memory SQLite shared by every connection in the test session.
TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session")
def create_test_tables():
    """Create all database tables once per session before tests run."""
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function")
def db_session(create_test_tables):
    """
    Provides a transactional database session for a test.
    Rolls back changes after the test.
    Overrides the main app's get_db dependency.
    """
    connection = engine.connect()
    transaction = connection.begin()
    db = TestingSessionLocal(bind=connection)

    original_get_db = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = lambda: db

    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()
        if original_get_db:
            app.dependency_overrides[get_db] = original_get_db
        else:
            del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def client(db_session: Session):
    """Provides a TestClient instance for making requests to the FastAPI app."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def as_participant():
    """Build the identity headers for a participant id."""

    def _headers(participant_id: str) -> dict:
        return {get_identity_header(): participant_id}

    return _headers


@pytest.fixture
def ranking_engine(db_session: Session) -> RankingEngine:
    """A pad-policy engine with a seeded shuffle and private locks."""
    return RankingEngine(
        db_session,
        rng=random.Random(7),
        locks=MeetingLockRegistry(),
        undersized_policy="pad",
    )


@pytest.fixture
def seed_participants(db_session: Session):
    """Create participants, each owning the given topic texts (best first)."""

    def _seed(topics_by_participant: dict) -> None:
        participants = ParticipantManager(db_session)
        topics = TopicManager(db_session)
        for participant_id, texts in topics_by_participant.items():
            participants.ensure_participant(participant_id)
            for text in texts:
                topics.create_topic(participant_id, text)

    return _seed
