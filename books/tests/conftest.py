import os

os.environ.setdefault("BOOKS_DB_DSN", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from main import app
from database import Base
from db_session import get_db_session


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_engine) -> Session:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(test_db_session):
    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db_session] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def create_book(client: TestClient):
    def _create(title: str, author: str = "Some Author", tags=None, cover_image=None) -> dict:
        payload = {"title": title, "author": author}
        if tags is not None:
            payload["tags"] = tags
        if cover_image is not None:
            payload["cover_image"] = cover_image
        r = client.post("/books", json=payload)
        assert r.status_code == 201, r.text
        return r.json()["book"]

    return _create
