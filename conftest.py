from concurrent.futures import Future
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from db import get_db, init_db, make_engine
from main import app
from models import PROJECT_STATUS_PUBLISHED, Project, User, Voicebank
from search_client import MeilisearchClient, get_search_client
from search_sync import SearchIndexSync


class InlineExecutor:
    """Runs index writes on the committing thread so tests can assert right after commit."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_result(fn(*args, **kwargs))
        return future

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def search_client():
    client = MagicMock(spec=MeilisearchClient)
    client.is_available.return_value = True
    client.health.return_value = {"status": "available"}
    client.add_documents.return_value = {"taskUid": 7}
    client.delete_documents.return_value = {"taskUid": 8}
    client.get_stats.return_value = {"numberOfDocuments": 1, "isIndexing": False}
    client.search.return_value = {"hits": [], "estimatedTotalHits": 0, "processingTimeMs": 1}
    return client


@pytest.fixture
def index_sync(search_client, session_factory):
    sync = SearchIndexSync(client=search_client, session_factory=session_factory, sleep=lambda seconds: None,
                           executor=InlineExecutor())
    sync.install()
    yield sync
    sync.uninstall()


@pytest.fixture
def db(session_factory, index_sync):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory, index_sync, search_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_search_client] = lambda: search_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seed(db, search_client):
    """Two users, an admin, a voicebank and project p1 published by u2 with no likes."""
    db.add_all([
        User(id="u1", first_name="Alice", last_name="Martin", email="alice@example.com", token="token-u1"),
        User(id="u2", first_name="Bob", last_name="Durand", email="bob@example.com", token="token-u2"),
        User(id="admin", first_name="Ada", last_name="Root", email="admin@example.com",
             token="token-admin", admin=True),
        Voicebank(id="vb1", name="Teto", filename_disk="teto.zip"),
    ])
    db.flush()
    db.add(Project(
        id="p1",
        title="Spring Song",
        description="A calm melody",
        status=PROJECT_STATUS_PUBLISHED,
        tempo=128,
        key_signature="G",
        likes_count=0,
        user_created="u2",
        primary_voicebank="vb1",
    ))
    db.commit()
    search_client.reset_mock()
    return db


@pytest.fixture
def alice_headers():
    return {"Authorization": "Bearer token-u1"}


@pytest.fixture
def bob_headers():
    return {"Authorization": "Bearer token-u2"}


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer token-admin"}
