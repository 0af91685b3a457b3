import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect, text

from dermai.api import create_app


def _signup(client, username="alice", email="alice@x.com", password="pw123"):
    return client.post(
        "/api/signup",
        json={"username": username, "email": email, "password": password},
    )


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "OK", "message": "DERMAI Backend is running"}


@pytest.mark.parametrize(
    "body",
    [
        {"email": "a@x.com", "password": "pw"},
        {"username": "a", "password": "pw"},
        {"username": "a", "email": "a@x.com"},
        {"username": "", "email": "a@x.com", "password": "pw"},
    ],
)
def test_signup_requires_all_fields(client, body):
    resp = client.post("/api/signup", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "All fields are required"}


def test_signup_duplicate_email_conflicts(client):
    assert _signup(client).status_code == 200
    resp = _signup(client, username="alice2")
    assert resp.status_code == 409
    assert resp.json() == {"error": "Username or email already exists"}


def test_signup_duplicate_username_conflicts(client):
    assert _signup(client).status_code == 200
    resp = _signup(client, email="other@x.com")
    assert resp.status_code == 409


def test_signin_requires_fields(client):
    resp = client.post("/api/signin", json={"email": "alice@x.com"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Email and password are required"}


def test_upload_png(client, settings):
    resp = client.post(
        "/api/upload",
        files={"image": ("mole.png", b"\x89PNG\r\n\x1a\n", "image/png")},
        data={"userId": "1"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["imageId"] == 1
    assert data["originalFilename"] == "mole.png"
    assert data["filename"] != data["originalFilename"]
    assert data["filename"].endswith(".png")
    assert data["filePath"].endswith(data["filename"])
    with open(data["filePath"], "rb") as fh:
        assert fh.read() == b"\x89PNG\r\n\x1a\n"


def test_upload_without_user_is_anonymous(client, store):
    resp = client.post(
        "/api/upload",
        files={"image": ("rash.jpg", b"jpeg", "image/jpeg")},
        data={"userId": ""},
    )
    assert resp.status_code == 200
    image_id = resp.json()["imageId"]
    store.create_detection_result(image_id, 5, "Eczema", 0.8, "Cream")
    assert store.list_detection_results_for_user(5)[0]["original_filename"] == "rash.jpg"


def test_upload_rejects_text_file(client):
    resp = client.post(
        "/api/upload",
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 415
    assert resp.json() == {"error": "Only image files are allowed!"}


def test_upload_rejects_large_file(client, settings):
    payload = b"x" * (settings.max_upload_bytes + 1)
    resp = client.post(
        "/api/upload",
        files={"image": ("big.png", payload, "image/png")},
    )
    assert resp.status_code == 413
    assert resp.json() == {"error": "File too large"}


def test_upload_without_file(client):
    resp = client.post("/api/upload", data={"userId": "1"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No image file uploaded"}


def test_upload_rejects_bad_user_id(client):
    resp = client.post(
        "/api/upload",
        files={"image": ("mole.png", b"png", "image/png")},
        data={"userId": "abc"},
    )
    assert resp.status_code == 400


def test_save_detection_result(client):
    body = {
        "imageId": 3,
        "userId": 1,
        "disease": "Melanoma",
        "accuracy": 87.5,
        "medicine": "See a dermatologist",
    }
    resp = client.post("/api/detection-result", json=body)
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "resultId": 1,
        "disease": "Melanoma",
        "accuracy": 87.5,
        "medicine": "See a dermatologist",
    }


def test_save_detection_result_without_references(client):
    resp = client.post(
        "/api/detection-result",
        json={"disease": "Acne", "accuracy": 0.4, "medicine": "Retinoid"},
    )
    assert resp.status_code == 200


def test_zero_accuracy_is_accepted(client):
    resp = client.post(
        "/api/detection-result",
        json={"userId": 1, "disease": "Acne", "accuracy": 0, "medicine": "Retinoid"},
    )
    assert resp.status_code == 200
    assert resp.json()["accuracy"] == 0


@pytest.mark.parametrize("missing", ["disease", "accuracy", "medicine"])
def test_detection_result_requires_fields(client, store, missing):
    body = {"userId": 1, "disease": "Acne", "accuracy": 0.4, "medicine": "Retinoid"}
    del body[missing]
    resp = client.post("/api/detection-result", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Disease, accuracy, and medicine are required"}
    assert store.list_detection_results_for_user(1) == []


def test_detection_result_rejects_empty_strings(client, store):
    resp = client.post(
        "/api/detection-result",
        json={"userId": 1, "disease": "", "accuracy": 0.4, "medicine": "Retinoid"},
    )
    assert resp.status_code == 400
    assert store.list_detection_results_for_user(1) == []


def test_history_empty(client):
    resp = client.get("/api/history/1")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "history": []}


def test_history_flow(client):
    user_id = _signup(client).json()["userId"]
    upload = client.post(
        "/api/upload",
        files={"image": ("mole.png", b"png", "image/png")},
        data={"userId": str(user_id)},
    ).json()
    client.post(
        "/api/detection-result",
        json={
            "imageId": upload["imageId"],
            "userId": user_id,
            "disease": "Eczema",
            "accuracy": 0.9,
            "medicine": "Hydrocortisone",
        },
    )
    client.post(
        "/api/detection-result",
        json={"userId": user_id, "disease": "Acne", "accuracy": 0.6, "medicine": "Retinoid"},
    )

    resp = client.get(f"/api/history/{user_id}")
    assert resp.status_code == 200
    history = resp.json()["history"]
    assert [row["disease"] for row in history] == ["Acne", "Eczema"]
    assert history[0]["original_filename"] is None
    assert history[1]["original_filename"] == "mole.png"
    assert history[1]["uploaded_at"] is not None
    assert set(history[1]) == {
        "id",
        "image_id",
        "user_id",
        "disease",
        "accuracy",
        "medicine",
        "detected_at",
        "original_filename",
        "uploaded_at",
    }


def test_history_store_error_is_500(client, monkeypatch, store):
    from dermai.errors import StoreError

    def broken(user_id):
        raise StoreError("Error fetching history")

    monkeypatch.setattr(store, "list_detection_results_for_user", broken)
    resp = client.get("/api/history/1")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Error fetching history"}


def test_unknown_route_returns_error_json(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert "error" in resp.json()


def _drop_table(store, table):
    with store.engine.begin() as conn:
        conn.execute(text(f"DROP TABLE {table}"))


def test_signup_store_error_is_500(client, store):
    _drop_table(store, "users")
    resp = _signup(client)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Error creating user"}


def test_signin_store_error_is_500(client, store):
    _drop_table(store, "users")
    resp = client.post("/api/signin", json={"email": "alice@x.com", "password": "pw123"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Database error"}


def test_upload_store_error_is_500(client, store):
    _drop_table(store, "images")
    resp = client.post(
        "/api/upload",
        files={"image": ("mole.png", b"png", "image/png")},
    )
    assert resp.status_code == 500
    assert resp.json() == {"error": "Error saving image"}


def test_detection_result_store_error_is_500(client, store):
    _drop_table(store, "detection_results")
    resp = client.post(
        "/api/detection-result",
        json={"disease": "Acne", "accuracy": 0.4, "medicine": "Retinoid"},
    )
    assert resp.status_code == 500
    assert resp.json() == {"error": "Error saving detection result"}


@pytest.mark.parametrize("accuracy", ["1e400", "-1e400", "NaN", "Infinity"])
def test_detection_result_rejects_non_finite_accuracy(client, store, accuracy):
    body = '{"userId": 1, "disease": "Acne", "accuracy": %s, "medicine": "Retinoid"}' % accuracy
    resp = client.post(
        "/api/detection-result",
        content=body,
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Disease, accuracy, and medicine are required"}
    assert store.list_detection_results_for_user(1) == []


def test_history_rejects_out_of_range_user_id(client):
    resp = client.get("/api/history/99999999999999999999")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid userId"}


def test_upload_rejects_out_of_range_user_id(client, settings):
    resp = client.post(
        "/api/upload",
        files={"image": ("mole.png", b"png", "image/png")},
        data={"userId": "99999999999999999999"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid userId"}


@pytest.mark.parametrize("field", ["imageId", "userId"])
def test_detection_result_rejects_out_of_range_references(client, store, field):
    body = {"disease": "Acne", "accuracy": 0.4, "medicine": "Retinoid"}
    body[field] = 99999999999999999999
    resp = client.post("/api/detection-result", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": f"Invalid {field}"}


@pytest.mark.parametrize("field", ["imageId", "userId"])
def test_detection_result_bad_reference_type_names_the_field(client, field):
    body = {"disease": "Acne", "accuracy": 0.4, "medicine": "Retinoid", field: "abc"}
    resp = client.post("/api/detection-result", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": f"Invalid {field}"}


def test_missing_required_field_wins_over_bad_reference(client):
    body = {"disease": "Acne", "medicine": "Retinoid", "imageId": "abc"}
    resp = client.post("/api/detection-result", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Disease, accuracy, and medicine are required"}


def test_upload_size_limit_is_inclusive(settings, store):
    small = settings.model_copy(update={"max_upload_bytes": 16})
    with TestClient(create_app(small, store=store)) as client:
        exact = client.post(
            "/api/upload",
            files={"image": ("mole.png", b"x" * 16, "image/png")},
        )
        over = client.post(
            "/api/upload",
            files={"image": ("mole.png", b"x" * 17, "image/png")},
        )
    assert exact.status_code == 200
    assert over.status_code == 413


def test_startup_creates_schema_and_upload_dir(settings):
    app = create_app(settings)
    assert not os.path.isdir(settings.upload_dir)
    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        tables = inspect(app.state.store.engine).get_table_names()
    assert sorted(tables) == ["detection_results", "images", "users"]
    assert app.state.blobs.directory.is_dir()
