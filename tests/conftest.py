import pytest
from fastapi.testclient import TestClient

from survey_api.main import app
from survey_api.routers.surveys import SURVEYS
from survey_api.services.store import LocalDocumentStore, get_store


@pytest.fixture
def store():
    s = LocalDocumentStore()
    s.create_unique_index(SURVEYS, "token")
    return s


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_survey(client):
    def _make(title="Lunch", questions=None):
        body = {
            "title": title,
            "questions": questions if questions is not None else [
                {"question_title": "Name?", "question_type": "Text"},
                {"question_title": "Pizza?", "question_type": "Multiple Choice", "answers": ["yes", "no"]},
            ],
        }
        resp = client.post("/surveys", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make
