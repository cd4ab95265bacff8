from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.db.base import Base
from app.db.session import configure_engine, get_engine
from app.main import app

USER_ID = 17


@pytest.fixture()
def client(tmp_path: Path) -> Iterator[TestClient]:
    database_url = f"sqlite:///{tmp_path / 'test_notifications.db'}"
    configure_engine(database_url)
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


def _dispatch(client: TestClient, **overrides) -> dict:
    body = {
        "user_id": USER_ID,
        "title": "Project archived",
        "type": "project.archived",
        "category": "project",
        "payload": {"projectId": 9, "_trace": "t-1"},
    }
    body.update(overrides)
    response = client.post("/notifications", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_preferences_default_then_upsert(client: TestClient) -> None:
    response = client.get(f"/users/{USER_ID}/notification-preferences")
    assert response.status_code == 200
    defaults = response.json()
    assert defaults["sms_enabled"] is False
    assert defaults["digest_frequency"] == "immediate"
    assert defaults["channels"] == {"email": True, "push": True, "sms": False, "inApp": True}

    response = client.put(
        f"/users/{USER_ID}/notification-preferences",
        json={
            "push_enabled": False,
            "digest_frequency": "weekly",
            "quiet_hours_start": "22:00",
            "quiet_hours_end": "6:30",
            "timezone": "Europe/Berlin",
        },
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["push_enabled"] is False
    assert updated["email_enabled"] is True
    assert updated["quiet_hours_end"] == "06:30"
    assert updated["timezone"] == "Europe/Berlin"
    assert updated["channels"]["push"] is False

    response = client.put(
        f"/users/{USER_ID}/notification-preferences", json={"sms_enabled": True}
    )
    assert response.json()["digest_frequency"] == "weekly"
    assert response.json()["sms_enabled"] is True


@pytest.mark.parametrize(
    "body",
    [
        {"quiet_hours_start": "25:00"},
        {"timezone": "Nowhere/Land"},
        {"digest_frequency": "hourly"},
    ],
)
def test_invalid_preferences_rejected(client: TestClient, body: dict) -> None:
    response = client.put(f"/users/{USER_ID}/notification-preferences", json=body)

    assert response.status_code == 422
    assert "error" in response.json()


def test_invalid_user_id_rejected(client: TestClient) -> None:
    response = client.get("/users/0/notification-preferences")

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_dispatch_and_list(client: TestClient) -> None:
    created = _dispatch(client)
    assert created["status"] == "delivered"
    assert created["payload"]["projectId"] == 9
    assert "_trace" not in created["payload"]

    _dispatch(client, type="project.restored", title="Project restored")

    response = client.get(f"/users/{USER_ID}/notifications")
    assert response.status_code == 200
    assert len(response.json()) == 2

    response = client.get(f"/users/{USER_ID + 1}/notifications")
    assert response.json() == []


def test_dispatch_without_user_id_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/notifications", json={"title": "Orphan", "type": "system.notice"}
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert client.get(f"/users/{USER_ID}/notifications").json() == []


def test_read_and_dismiss(client: TestClient) -> None:
    first = _dispatch(client)
    second = _dispatch(client, type="project.restored")

    response = client.post(f"/users/{USER_ID}/notifications/{first['id']}/read")
    assert response.status_code == 200
    assert response.json()["status"] == "read"
    assert response.json()["read_at"] is not None

    response = client.post(f"/users/{USER_ID}/notifications/{second['id']}/dismiss")
    assert response.status_code == 200
    assert response.json()["status"] == "dismissed"

    response = client.post(f"/users/{USER_ID}/notifications/{first['id']}/dismiss")
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "NOTIFICATION_INVALID_TRANSITION"

    response = client.get(f"/users/{USER_ID}/notifications", params={"status": "read"})
    assert [item["id"] for item in response.json()] == [first["id"]]


def test_other_users_notification_is_not_found(client: TestClient) -> None:
    created = _dispatch(client)

    response = client.post(f"/users/{USER_ID + 1}/notifications/{created['id']}/read")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOTIFICATION_NOT_FOUND"


def test_health_reports_database(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok"}
