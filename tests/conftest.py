"""Shared fixtures: a Flask test client on a throwaway local backend, plus test doubles."""

import json

import pytest

import coach_core
from app import app as flask_app
from coach_app.exceptions import GatewayError
from coach_app.routes import active_timers
from coach_app.storage import LocalGateway

USER_EMAIL = "ana@example.com"
USER_PASSWORD = "secret123"


class MemoryGateway:
    """In-memory persistence gateway that records every call."""

    def __init__(self):
        self.completed = {}
        self.stats = {}
        self.calls = []
        self.fail_record = False
        self.fail_update = False

    def fetch_completed_exercise_ids(self, user_id, day):
        self.calls.append(("fetch_completed_exercise_ids", user_id, day))
        return set(self.completed.get((user_id, day.isoformat()), ()))

    def record_completion(self, user_id, exercise_id, exercise_kind, day):
        self.calls.append(("record_completion", user_id, exercise_id, exercise_kind, day))
        if self.fail_record:
            raise GatewayError("backend down", status_code=503)
        self.completed.setdefault((user_id, day.isoformat()), set()).add(exercise_id)

    def fetch_user_stats(self, user_id):
        self.calls.append(("fetch_user_stats", user_id))
        row = self.stats.get(user_id)
        return dict(row) if row is not None else None

    def update_user_stats(self, user_id, fields):
        self.calls.append(("update_user_stats", user_id, dict(fields)))
        if self.fail_update:
            raise GatewayError("backend down", status_code=503)
        self.stats.setdefault(user_id, {}).update(fields)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeHTTP:
    """Stands in for requests.Session, replaying queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def audit_log(tmp_path, monkeypatch):
    path = tmp_path / "logs.jsonl"
    monkeypatch.setattr(coach_core, "LOG_FILE", str(path))
    return path


@pytest.fixture(autouse=True)
def no_active_timers():
    active_timers.clear()
    yield
    active_timers.clear()


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "data")


@pytest.fixture
def gateway(data_dir):
    return LocalGateway(data_dir)


@pytest.fixture
def memory_gateway():
    return MemoryGateway()


@pytest.fixture
def app(data_dir):
    flask_app.config.update(
        TESTING=True,
        SECRET_KEY="test-secret",
        COACH_BACKEND="local",
        COACH_DATA_DIR=data_dir,
    )
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(gateway):
    return gateway.add_user(USER_EMAIL, USER_PASSWORD, "Ana")


@pytest.fixture
def logged_in(client, user):
    response = client.post("/auth", data={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert response.status_code == 302
    return client
