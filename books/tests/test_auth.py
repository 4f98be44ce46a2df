from fastapi.testclient import TestClient

from config import Config
from database import User
from security import create_session_token, read_session_token


def signup(client: TestClient, email="reader@example.com", password="secret123"):
    return client.post("/auth/signup", json={"email": email, "password": password})


def test_signup_sets_cookie_and_returns_user(client: TestClient):
    r = signup(client)
    assert r.status_code == 201
    assert r.json()["user"]["email"] == "reader@example.com"
    assert Config.AUTH_COOKIE_NAME in r.cookies


def test_signup_stores_hashed_password(client: TestClient, test_db_session):
    signup(client)
    user = test_db_session.query(User).one()
    assert user.password_hash != "secret123"


def test_signup_rejects_duplicate_email(client: TestClient):
    signup(client)
    r = signup(client)
    assert r.status_code == 400
    assert r.json() == {"error": "Email already registered"}


def test_signup_rejects_short_password(client: TestClient):
    r = signup(client, password="123")
    assert r.status_code == 400
    assert "password" in r.json()["error"]


def test_login_and_me(client: TestClient):
    signup(client, email="b@example.com")
    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401

    r = client.post("/auth/login", json={"email": "b@example.com", "password": "secret123"})
    assert r.status_code == 200

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "b@example.com"


def test_login_rejects_bad_password(client: TestClient):
    signup(client, email="c@example.com")
    r = client.post("/auth/login", json={"email": "c@example.com", "password": "wrongwrong"})
    assert r.status_code == 401
    assert r.json() == {"error": "Invalid email or password"}


def test_login_rejects_unknown_email(client: TestClient):
    r = client.post("/auth/login", json={"email": "nobody@example.com", "password": "secret123"})
    assert r.status_code == 401


def test_me_requires_auth(client: TestClient):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json() == {"error": "Not authenticated"}


def test_session_token_round_trip():
    token = create_session_token("user-1")
    assert read_session_token(token) == "user-1"
    assert read_session_token(token + "tampered") is None


def test_signup_losing_unique_email_race(client: TestClient, test_db_session, monkeypatch):
    # Another sign-up commits the email after this request's existence check
    test_db_session.add(User(email="race@example.com", password_hash="x"))
    test_db_session.commit()

    class NoMatch:
        def scalar_one_or_none(self):
            return None

    real_execute = test_db_session.execute
    pending = [NoMatch()]
    monkeypatch.setattr(
        test_db_session,
        "execute",
        lambda *args, **kwargs: pending.pop() if pending else real_execute(*args, **kwargs),
    )

    r = signup(client, email="race@example.com")
    assert r.status_code == 400
    assert r.json() == {"error": "Email already registered"}
    assert test_db_session.query(User).filter_by(email="race@example.com").count() == 1
