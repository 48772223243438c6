from fastapi import FastAPI
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.testclient import TestClient

from cafe_srs.api.deps import get_card_store
from cafe_srs.api.srs_routes import create_srs_router
from cafe_srs.core.config import get_config
from cafe_srs.main import rate_limit_handler

HEADERS = {"X-User-Id": "learner-1"}
OTHER = {"X-User-Id": "learner-2"}


def _create(client, headers=HEADERS, **overrides):
    payload = {"type": "l2_to_l1", "front": {"text": "merci"}, "back": {"text": "thank you"}}
    payload.update(overrides)
    response = client.post("/api/srs/card", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_requires_user_header(client):
    response = client.get("/api/srs/due")
    assert response.status_code == 401


def test_create_card(client):
    data = _create(client, sourceType="vocabulary", sourceId="v-1", level="A2", tags=["greeting"])
    assert data["id"].startswith("card_")
    assert data["type"] == "l2_to_l1"
    assert data["status"] == "new"
    assert "createdAt" in data


def test_create_card_requires_content(client):
    response = client.post("/api/srs/card", json={"type": "cloze", "front": {"text": "x"}}, headers=HEADERS)
    assert response.status_code == 400


def test_due_cards(client):
    created = _create(client)
    _create(client, type="cloze", front={"text": "[...] beaucoup"}, back={"text": "merci"})

    response = client.get("/api/srs/due", headers=HEADERS)
    assert response.status_code == 200
    data = response.json()
    assert len(data["cards"]) == 2
    assert data["newCount"] == 2
    assert data["estimatedMinutes"] == 1
    first = next(c for c in data["cards"] if c["id"] == created["id"])
    assert first["front"] == {"text": "merci"}
    assert first["status"] == "new"
    assert first["difficulty"] == "easy"

    filtered = client.get("/api/srs/due", params={"types": "cloze"}, headers=HEADERS).json()
    assert [c["type"] for c in filtered["cards"]] == ["cloze"]

    assert client.get("/api/srs/due", headers=OTHER).json()["cards"] == []


def test_new_cards(client):
    _create(client)
    _create(client)
    data = client.get("/api/srs/new", params={"limit": 1}, headers=HEADERS).json()
    assert data["total"] == 1


def test_review_validation(client):
    card = _create(client)
    response = client.post("/api/srs/review", json={"cardId": card["id"], "quality": 7}, headers=HEADERS)
    assert response.status_code == 400
    response = client.post("/api/srs/review", json={"cardId": card["id"]}, headers=HEADERS)
    assert response.status_code == 400


def test_review_unknown_card(client):
    response = client.post("/api/srs/review", json={"cardId": "card_nope", "quality": 3}, headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_review_other_users_card(client):
    card = _create(client)
    response = client.post("/api/srs/review", json={"cardId": card["id"], "quality": 4}, headers=OTHER)
    assert response.status_code == 404


def test_review_easy_graduates(client):
    card = _create(client)
    response = client.post(
        "/api/srs/review", json={"cardId": card["id"], "quality": 5, "timeSpent": 6}, headers=HEADERS
    )
    assert response.status_code == 200
    data = response.json()
    assert data["card"]["status"] == "review"
    assert data["card"]["interval"] == 4
    assert data["card"]["easeFactor"] == 2.5
    assert data["stats"]["cardsReviewed"] == 1
    assert data["stats"]["correctRate"] == 100
    assert data["stats"]["cardsRemaining"] == 0

    history = client.get(f"/api/srs/card/{card['id']}/history", headers=HEADERS).json()
    assert len(history) == 1
    assert history[0]["quality"] == 5
    assert history[0]["timeSpent"] == 6
    assert history[0]["statusAfter"] == "review"


def test_vocabulary_cards(client):
    payload = {
        "vocabularyId": "vocab-9",
        "french": "fromage",
        "english": "cheese",
        "ipa": "/fʁɔ.maʒ/",
        "example": "J'adore le fromage.",
        "level": "A1",
    }
    response = client.post("/api/srs/vocabulary", json=payload, headers=HEADERS)
    assert response.status_code == 201
    data = response.json()
    assert data["total"] == 4
    cloze = data["cards"][3]
    assert cloze["type"] == "cloze"
    assert cloze["front"] == {"text": "J'adore le [...]."}


def test_suspend_and_unsuspend(client):
    card = _create(client)

    assert client.post(f"/api/srs/card/{card['id']}/suspend", headers=HEADERS).status_code == 200
    assert client.get("/api/srs/due", headers=HEADERS).json()["cards"] == []

    response = client.post("/api/srs/review", json={"cardId": card["id"], "quality": 4}, headers=HEADERS)
    assert response.status_code == 409

    assert client.post(f"/api/srs/card/{card['id']}/unsuspend", headers=HEADERS).status_code == 200
    due = client.get("/api/srs/due", headers=HEADERS).json()["cards"]
    assert [c["id"] for c in due] == [card["id"]]
    assert due[0]["status"] == "review"


def test_suspend_unknown_card(client):
    assert client.post("/api/srs/card/card_nope/suspend", headers=HEADERS).status_code == 404


def test_stats(client):
    _create(client)
    data = client.get("/api/srs/stats", headers=HEADERS).json()
    assert data == {
        "newCount": 1,
        "learningCount": 0,
        "reviewCount": 0,
        "dueToday": 1,
        "retention7Days": 0,
        "averageEase": 2.5,
    }


def test_forecast(client):
    data = client.get("/api/srs/forecast", headers=HEADERS).json()
    assert len(data["forecast"]) == 7
    assert all(day["newCards"] == 0 and day["reviewCards"] == 0 for day in data["forecast"])

    _create(client)
    data = client.get("/api/srs/forecast", params={"days": 3}, headers=HEADERS).json()
    assert len(data["forecast"]) == 3
    assert data["forecast"][0]["newCards"] == 1

    assert client.get("/api/srs/forecast", params={"days": 0}, headers=HEADERS).status_code == 400


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "uptime_seconds" in data


def test_swagger_docs(client):
    response = client.get("/api/docs")
    assert response.status_code == 200


def test_openapi_json(client):
    response = client.get("/api/openapi.json")
    assert response.status_code == 200
    assert "/api/srs/review" in response.json()["paths"]


def test_queue_limits_must_be_positive(client):
    card = _create(client)
    assert client.get("/api/srs/due", params={"limit": -1}, headers=HEADERS).status_code == 422
    assert client.get("/api/srs/new", params={"limit": 0}, headers=HEADERS).status_code == 422
    response = client.get(f"/api/srs/card/{card['id']}/history", params={"limit": 0}, headers=HEADERS)
    assert response.status_code == 422


def test_api_token_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(get_config().security, "api_token", "s3cret")

    assert client.get("/api/srs/stats", headers=HEADERS).status_code == 401
    wrong = {**HEADERS, "Authorization": "Bearer nope"}
    assert client.get("/api/srs/stats", headers=wrong).status_code == 401
    valid = {**HEADERS, "Authorization": "Bearer s3cret"}
    assert client.get("/api/srs/stats", headers=valid).status_code == 200


def test_concurrent_review_is_rejected(client, sql_store, monkeypatch):
    card = _create(client)
    write = sql_store.update

    def racing_update(card, expected_version, review=None):
        rival = sql_store.get(card.id)
        rival.status = "suspended"
        write(rival, rival.version)
        return write(card, expected_version, review=review)

    monkeypatch.setattr(sql_store, "update", racing_update)
    response = client.post("/api/srs/review", json={"cardId": card["id"], "quality": 4}, headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"

    monkeypatch.undo()
    assert sql_store.get(card["id"]).status == "suspended"
    assert sql_store.history(card["id"], 10) == []


def test_review_rate_limit(sql_store, monkeypatch):
    monkeypatch.setattr(get_config().rate_limit, "review", "1/minute")
    limited_app = FastAPI()
    limited_app.state.limiter = Limiter(key_func=get_remote_address)
    limited_app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    limited_app.include_router(create_srs_router())
    limited_app.dependency_overrides[get_card_store] = lambda: sql_store

    with TestClient(limited_app) as limited:
        card = _create(limited)
        review = {"cardId": card["id"], "quality": 4}
        assert limited.post("/api/srs/review", json=review, headers=HEADERS).status_code == 200
        response = limited.post("/api/srs/review", json=review, headers=HEADERS)

    assert response.status_code == 429
    assert response.json()["error"] == "rate_limited"
