from fastapi.testclient import TestClient
from sqlmodel import select

from keksobooking.api.deps import get_image_store
from keksobooking.core.errors import INTERNAL_MESSAGE
from keksobooking.core.log_buffer import get_request_entries
from keksobooking.db import models
from keksobooking.main import app
from keksobooking.services.offers import NAMES

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def test_create_offer_with_attachments(client, offer_fields):
    response = client.post(
        "/offers",
        data=offer_fields,
        files=[
            ("avatar", ("me.png", PNG_BYTES, "image/png")),
            ("avatar", ("ignored.png", b"second", "image/png")),
            ("preview", ("flat.jpg", b"jpeg-bytes", "image/jpeg")),
        ],
    )

    assert response.status_code == 200, response.json()
    payload = response.json()
    assert payload["name"] in NAMES
    assert payload["price"] == 30000
    assert payload["rooms"] == 2
    assert payload["guests"] == 3
    assert payload["features"] == ["wifi", "parking"]
    assert payload["location"] == {"x": 55, "y": 37}
    assert payload["avatar"] == {"name": "me.png", "mimetype": "image/png"}
    assert payload["preview"] == {"name": "flat.jpg", "mimetype": "image/jpeg"}

    fetched = client.get(f"/offers/{payload['date']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == payload["id"]

    avatar = client.get(f"/offers/{payload['date']}/avatar")
    assert avatar.status_code == 200
    assert avatar.content == PNG_BYTES
    assert avatar.headers["content-type"] == "image/png"
    assert avatar.headers["content-length"] == str(len(PNG_BYTES))


def test_create_offer_from_json_body(client, offer_fields, session_factory):
    offer_fields.update({"price": 4500, "rooms": 1, "guests": 2, "name": "Margo", "date": 1000})

    response = client.post("/offers", json=offer_fields)

    assert response.status_code == 200, response.json()
    assert response.json()["name"] == "Margo"
    with session_factory() as session:
        stored = session.exec(select(models.Offer)).one()
    assert str(stored.id) == response.json()["id"]
    assert stored.price == 4500


def test_create_offer_reports_every_violation(client):
    response = client.post("/offers", json={"title": "short", "price": "abc"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["statusCode"] == 400
    messages = " ".join(entry["errorMessage"] for entry in payload["errors"])
    for field in ("title", "type", "price", "address", "checkin", "checkout", "rooms", "guests"):
        assert f"'{field}'" in messages
    assert set(payload["errors"][0]) == {"error", "errorMessage"}


def test_create_offer_rejects_non_object_json(client):
    response = client.post("/offers", json=["not", "an", "object"])

    assert response.status_code == 400
    assert response.json()["errors"][0]["errorMessage"] == "request body must be a JSON object"


def test_list_offers_defaults_and_paging(client, offer_fields):
    for date in (1000, 3000, 2000):
        assert client.post("/offers", json=dict(offer_fields, date=date)).status_code == 200

    everything = client.get("/offers")
    assert everything.status_code == 200
    assert [offer["date"] for offer in everything.json()] == [3000, 2000, 1000]

    page = client.get("/offers", params={"limit": 1, "skip": 1})
    assert [offer["date"] for offer in page.json()] == [2000]


def test_list_offers_rejects_bad_params(client):
    response = client.get("/offers", params={"limit": 0, "skip": 0})

    assert response.status_code == 400
    assert response.json() == {
        "statusCode": 400,
        "errors": [
            {"error": "invalid field", "errorMessage": "'limit' input should be greater than or equal to 1"}
        ],
    }

    both = client.get("/offers", params={"limit": "ten", "skip": -1})
    assert both.status_code == 400
    assert [entry["errorMessage"].split()[0] for entry in both.json()["errors"]] == ["'limit'", "'skip'"]


def test_list_offers_rejects_offsets_too_large_for_the_database(client):
    response = client.get("/offers", params={"skip": "99999999999999999999999"})

    assert response.status_code == 400
    assert response.json()["errors"][0]["error"] == "invalid field"


def test_unknown_offer_is_not_found(client):
    for path in (
        "/offers/1234",
        "/offers/abc",
        "/offers/1234/avatar",
        "/offers/99999999999999999999999",
        "/offers/99999999999999999999999/avatar",
    ):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json()["errors"][0]["error"] == "no data found"


def test_avatar_missing_for_existing_offer(client, offer_fields):
    client.post("/offers", json=dict(offer_fields, date=555))

    response = client.get("/offers/555/avatar")

    assert response.status_code == 404
    assert response.json()["errors"][0]["errorMessage"] == "Offer 555 has no avatar"


def test_attachment_failure_returns_server_error_and_keeps_record(client, offer_fields, memory_image_store):
    memory_image_store.fail_on.add("avatar")
    app.dependency_overrides[get_image_store] = lambda: memory_image_store
    failing_client = TestClient(app, raise_server_exceptions=False)

    response = failing_client.post(
        "/offers",
        data=dict(offer_fields, date="4242"),
        files={"avatar": ("me.png", PNG_BYTES, "image/png")},
    )

    assert response.status_code == 500
    assert response.json() == {
        "statusCode": 500,
        "errors": [{"error": "internal server error", "errorMessage": INTERNAL_MESSAGE}],
    }
    assert client.get("/offers/4242").status_code == 200


def test_offer_requests_are_recorded(client):
    client.get("/offers")

    entries = get_request_entries()
    assert entries
    assert entries[-1].path == "/offers"
    assert entries[-1].status == 200


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nowhere")

    assert response.status_code == 404
    assert response.json()["statusCode"] == 404


def test_metadata_and_health(client, session_factory, monkeypatch):
    from keksobooking.api.routes import health

    monkeypatch.setattr(health, "get_session", session_factory)

    assert client.get("/metadata").json()["service"] == "Keksobooking API"
    assert client.get("/health").json() == {"status": "ok", "database": "ok"}


def test_oversized_address_coordinate_is_stored_as_null(client, offer_fields):
    response = client.post("/offers", data=dict(offer_fields, address="99999999999999999999,37"))

    assert response.status_code == 200, response.json()
    assert response.json()["location"] == {"x": None, "y": 37}
    assert client.get(f"/offers/{response.json()['date']}").json()["location"] == {"x": None, "y": 37}


def test_diagnostics_lists_requests_by_offer_key(client, offer_fields):
    client.post("/offers", json=dict(offer_fields, date=9001))
    client.get("/offers/9001")
    client.get("/offers/404")

    response = client.get("/diagnostics/logs", params={"key": "9001"})

    assert response.status_code == 200
    payload = response.json()
    assert [(entry["path"], entry["status"]) for entry in payload["requests"]] == [("/offers/9001", 200)]
    assert payload["limits"]["requests"] >= 1
    assert any("Saved offer" in entry["message"] for entry in payload["logs"])


def test_diagnostics_are_hidden_in_production(client, monkeypatch):
    from keksobooking.core.config import settings

    monkeypatch.setattr(settings, "environment", "production")

    response = client.get("/diagnostics/logs")

    assert response.status_code == 403
    assert response.json()["errors"][0]["errorMessage"] == "Logs are unavailable in production"
