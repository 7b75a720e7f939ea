import string
from unittest.mock import patch

from survey_api.routers import surveys as surveys_router
from survey_api.routers.surveys import SURVEYS


def _mc(n):
    return {"question_title": "Pick", "question_type": "Multiple Choice", "answers": [str(i) for i in range(n)]}


def _likert(n):
    return {"question_title": "Rate", "question_type": "Likert Scale", "answers": [str(i) for i in range(n)]}


# ---------- create ----------

def test_create_assigns_server_fields(client, store):
    resp = client.post("/surveys", json={
        "id": "ffffffffffffffffffffffff",
        "token": "ZZZZZ",
        "created_at": "1999-01-01T00:00:00Z",
        "title": "Lunch",
        "questions": [{"id": "eeeeeeeeeeeeeeeeeeeeeeee", "question_title": "Name?", "question_type": "Text"}],
    })
    assert resp.status_code == 201
    assert resp.headers["content-type"].startswith("application/json")
    body = resp.json()
    assert body["id"] != "ffffffffffffffffffffffff"
    assert body["token"] != "ZZZZZ"
    assert len(body["token"]) == 5 and all(c in string.ascii_letters for c in body["token"])
    assert body["created_at"] == body["updated_at"]
    assert body["created_at"] != "1999-01-01T00:00:00Z"
    assert body["questions"][0]["id"] != "eeeeeeeeeeeeeeeeeeeeeeee"
    assert store.find_one(SURVEYS, {"id": body["id"]})["title"] == "Lunch"


def test_two_surveys_get_distinct_tokens(make_survey):
    assert make_survey()["token"] != make_survey()["token"]


def test_create_without_title_fails(client, store):
    resp = client.post("/surveys", json={"title": "", "questions": []})
    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("text/plain")
    assert "Title is required" in resp.text
    assert store.find(SURVEYS) == []


def test_multiple_choice_answer_minimum(client, store):
    resp = client.post("/surveys", json={"title": "T", "questions": [_mc(1)]})
    assert resp.status_code == 400
    assert "MC Question" in resp.text
    assert store.find(SURVEYS) == []

    assert client.post("/surveys", json={"title": "T", "questions": [_mc(2)]}).status_code == 201


def test_likert_answer_minimum(client, store):
    resp = client.post("/surveys", json={"title": "T", "questions": [_likert(2)]})
    assert resp.status_code == 400
    assert "Likert Scale" in resp.text
    assert store.find(SURVEYS) == []

    assert client.post("/surveys", json={"title": "T", "questions": [_likert(3)]}).status_code == 201


def test_one_bad_question_rejects_whole_survey(client, store):
    resp = client.post("/surveys", json={"title": "T", "questions": [_mc(2), _likert(1), _mc(0)]})
    assert resp.status_code == 400
    assert "Likert Scale" in resp.text
    assert store.find(SURVEYS) == []


def test_create_retries_on_token_collision(client, store, make_survey):
    taken = make_survey()["token"]
    with patch.object(surveys_router, "generate_token", side_effect=[taken, taken, "fresh"]):
        resp = client.post("/surveys", json={"title": "Second"})
    assert resp.status_code == 201
    assert resp.json()["token"] == "fresh"
    assert len(store.find(SURVEYS)) == 2


def test_create_gives_up_after_repeated_collisions(client, store, make_survey):
    taken = make_survey()["token"]
    with patch.object(surveys_router, "generate_token", return_value=taken):
        resp = client.post("/surveys", json={"title": "Second"})
    assert resp.status_code == 500
    assert len(store.find(SURVEYS)) == 1


def test_invalid_json_body(client):
    resp = client.post("/surveys", content="not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


# ---------- list ----------

def test_list_returns_token_and_title_only(client, make_survey):
    created = make_survey()
    resp = client.get("/surveys")
    assert resp.status_code == 200
    assert resp.json() == [{"token": created["token"], "title": created["title"]}]


def test_list_empty(client):
    resp = client.get("/surveys")
    assert resp.status_code == 200
    assert resp.json() == []


def test_list_pagination(client, make_survey):
    titles = [make_survey(title=f"s{i}")["title"] for i in range(15)]

    page1 = client.get("/surveys", params={"page": 1, "limit": 10}).json()
    page2 = client.get("/surveys", params={"page": 2, "limit": 10}).json()
    assert [s["title"] for s in page1] == titles[:10]
    assert [s["title"] for s in page2] == titles[10:]


def test_list_bad_pagination_returns_everything(client, make_survey):
    for i in range(4):
        make_survey(title=f"s{i}")
    for params in ({"page": 0, "limit": 2}, {"page": 3, "limit": 2}, {"page": "x", "limit": 2}, {"limit": 2}):
        assert len(client.get("/surveys", params=params).json()) == 4


# ---------- by token / by id ----------

def test_round_trip_by_token(client, make_survey):
    created = make_survey()
    resp = client.get(f"/surveys/token/{created['token']}")
    assert resp.status_code == 200
    fetched = resp.json()
    assert fetched["title"] == created["title"]
    assert fetched["questions"] == created["questions"]


def test_unknown_token_is_404(client):
    resp = client.get("/surveys/token/nopee")
    assert resp.status_code == 404
    assert resp.text == "No survey found"


def test_get_by_id(client, make_survey):
    created = make_survey()
    assert client.get(f"/surveys/{created['id']}").json() == created
    assert client.get("/surveys/aaaaaaaaaaaaaaaaaaaaaaaa").status_code == 404
    assert client.get("/surveys/bogus").status_code == 400


# ---------- update ----------

def test_update_title_and_questions(client, make_survey):
    created = make_survey()
    kept = created["questions"][0]
    resp = client.put(f"/surveys/{created['id']}", json={
        "title": "Dinner",
        "questions": [kept, {"question_title": "Wine?", "question_type": "Likert Scale", "answers": ["1", "2", "3"]}],
    })
    assert resp.status_code == 200
    assert resp.json() == {"message": "survey updated"}

    stored = client.get(f"/surveys/{created['id']}").json()
    assert stored["title"] == "Dinner"
    assert stored["token"] == created["token"]
    assert stored["questions"][0] == kept
    assert len(stored["questions"][1]["id"]) == 24
    assert stored["updated_at"] >= created["updated_at"]


def test_update_title_only_keeps_questions(client, make_survey):
    created = make_survey()
    assert client.put(f"/surveys/{created['id']}", json={"title": "New", "questions": []}).status_code == 200
    stored = client.get(f"/surveys/{created['id']}").json()
    assert stored["questions"] == created["questions"]


def test_update_ignores_server_fields(client, make_survey):
    created = make_survey()
    client.put(f"/surveys/{created['id']}", json={"title": "New", "token": "HIJAK", "id": "f" * 24})
    stored = client.get(f"/surveys/{created['id']}").json()
    assert stored["token"] == created["token"]


def test_update_missing_survey(client, store):
    resp = client.put("/surveys/aaaaaaaaaaaaaaaaaaaaaaaa", json={"title": "x"})
    assert resp.status_code == 400
    assert "does not exist" in resp.text
    assert store.find(SURVEYS) == []


def test_update_bad_id(client):
    assert client.put("/surveys/123", json={"title": "x"}).status_code == 400


def test_update_with_nothing_to_change(client, make_survey):
    created = make_survey()
    resp = client.put(f"/surveys/{created['id']}", json={"title": "", "questions": []})
    assert resp.status_code == 400
    assert resp.text == "No updates"


def test_update_rejects_question_without_type(client, make_survey):
    created = make_survey()
    resp = client.put(f"/surveys/{created['id']}", json={
        "title": "Changed",
        "questions": [{"question_title": "Q"}],
    })
    assert resp.status_code == 400
    assert resp.text == "Invalid Question without title or type"
    assert client.get(f"/surveys/{created['id']}").json()["title"] == created["title"]


def test_update_applies_answer_minimums(client, make_survey):
    created = make_survey()
    resp = client.put(f"/surveys/{created['id']}", json={"questions": [_mc(1)]})
    assert resp.status_code == 400
    assert client.get(f"/surveys/{created['id']}").json()["questions"] == created["questions"]


# ---------- delete ----------

def test_delete_cascades_to_responses(client, make_survey):
    target = make_survey()
    other = make_survey()
    qid = target["questions"][0]["id"]
    for _ in range(3):
        client.post(f"/responses/{target['id']}", json=[{"question_id": qid, "response_text": "hi"}])
    client.post(f"/responses/{other['id']}", json=[{"question_id": other["questions"][0]["id"], "response_text": "yo"}])

    resp = client.delete(f"/surveys/{target['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"message": "survey deleted"}

    assert client.get(f"/surveys/token/{target['token']}").status_code == 404
    assert client.get(f"/responses/{target['id']}").json() == []
    assert len(client.get(f"/responses/{other['id']}").json()) == 1


def test_delete_twice(client, make_survey):
    created = make_survey()
    assert client.delete(f"/surveys/{created['id']}").status_code == 200
    resp = client.delete(f"/surveys/{created['id']}")
    assert resp.status_code == 500
    assert "already removed" in resp.text


def test_delete_bad_id(client):
    assert client.delete("/surveys/zzz").status_code == 400


def test_update_checks_survey_before_body(client):
    resp = client.put("/surveys/aaaaaaaaaaaaaaaaaaaaaaaa", json=["x"])
    assert resp.status_code == 400
    assert "does not exist" in resp.text


def test_update_bad_body(client, make_survey):
    created = make_survey()
    resp = client.put(f"/surveys/{created['id']}", json=["x"])
    assert resp.status_code == 400
    assert resp.text == "Invalid request body"
    resp = client.put(f"/surveys/{created['id']}", content="{oops", headers={"content-type": "application/json"})
    assert resp.status_code == 400
