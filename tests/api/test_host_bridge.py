"""
Tests for the local HTTP/WebSocket bridge.
"""

import json
import time
import pytest
from fastapi.testclient import TestClient

from examsy.core.config import Settings
from examsy.core.credentials import MemoryLocalStorage
from examsy.core.memory_store import MemoryStore
from main import create_app


def seeded_store():
    return MemoryStore({
        "students": {
            "001": {"nis": "001", "name": "AHMAD", "class": "7", "password": "pw", "status": "NOT_STARTED", "violations": 0},
            "002": {"nis": "002", "name": "SITI", "class": "7", "password": "pw", "status": "BLOCKED", "roomId": "R1"},
        },
        "sessions": {"S1": {"id": "S1", "name": "MATH", "class": "7", "pin": "ABC12", "isActive": True}},
        "rooms": {"R1": {"id": "R1", "name": "RUANG 01", "username": "proctor1", "password": "pw1"}},
    })


def wait_until(client, path, predicate, timeout=2.0):
    """Poll an endpoint until its JSON body satisfies ``predicate``."""
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(path).json()
        if predicate(body) or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


@pytest.fixture
def store():
    return seeded_store()


@pytest.fixture
def storage():
    return MemoryLocalStorage()


@pytest.fixture
def client(store, storage):
    config = Settings(STORE_BACKEND="memory", ADMIN_USERNAME="admin", ADMIN_PASSWORD="admin123")
    app = create_app(config=config, store=store, storage=storage)
    with TestClient(app) as client:
        wait_until(client, "/api/v1/state", lambda body: body["initial_load_complete"])
        wait_until(client, "/api/v1/rooms", lambda body: len(body) == 1)
        wait_until(client, "/api/v1/sessions", lambda body: len(body) == 1)
        yield client


class TestData:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["initial_load_complete"] is True

    def test_state(self, client):
        body = client.get("/api/v1/state").json()

        assert body["session"]["view"] == "ANONYMOUS"
        assert body["is_processing"] is False

    def test_students_filtered(self, client):
        assert [s["nis"] for s in client.get("/api/v1/students").json()] == ["001", "002"]
        assert [s["nis"] for s in client.get("/api/v1/students", params={"room": "R1"}).json()] == ["002"]
        assert [s["nis"] for s in client.get("/api/v1/students", params={"search": "ahm"}).json()] == ["001"]

    def test_students_carry_room_label(self, client):
        students = {s["nis"]: s for s in client.get("/api/v1/students").json()}

        assert students["002"]["roomName"] == "RUANG 01"
        assert students["001"]["roomName"] == "-"

    def test_create_session_assigns_timestamp_id(self, client, store):
        response = client.post("/api/v1/sessions", json={"name": "IPA", "class": "8", "pin": "XYZ"})

        body = response.json()
        assert body["success"] is True
        assert body["id"].isdigit()
        assert store.documents("sessions")[body["id"]] == {"id": body["id"], "name": "IPA", "class": "8", "pin": "XYZ"}

    def test_create_room_keeps_given_id(self, client, store):
        response = client.post("/api/v1/rooms", json={"id": "R2", "name": "RUANG 02", "capacity": 20})

        assert response.json() == {"success": True, "id": "R2"}
        assert store.documents("rooms")["R2"]["capacity"] == 20

    def test_toggle_session(self, client, store):
        response = client.post("/api/v1/sessions/S1/toggle")

        assert response.json() == {"success": True, "is_active": False}
        assert store.documents("sessions")["S1"]["isActive"] is False

    def test_toggle_unknown_session(self, client):
        assert client.post("/api/v1/sessions/S404/toggle").status_code == 404

    def test_action_round_trip(self, client, store):
        response = client.post("/api/v1/actions", json={
            "action": "UPDATE_STUDENT", "payload": {"nis": "001", "roomId": "R1"}
        })

        assert response.json() == {"success": True}
        assert store.documents("students")["001"]["roomId"] == "R1"
        students = wait_until(
            client, "/api/v1/students",
            lambda body: any(s["nis"] == "001" and s["roomId"] == "R1" for s in body)
        )
        assert any(s["nis"] == "001" and s["roomId"] == "R1" for s in students)

    def test_unknown_action_reports_failure(self, client):
        response = client.post("/api/v1/actions", json={"action": "DROP_ALL", "payload": {}})

        assert response.status_code == 200
        assert response.json() == {"success": False}

    def test_import_csv(self, client, store):
        body = "\ufeffNIS,NAMA,KELAS,RUANG\n003,Budi,8,ruang 01\n,broken\n".encode("utf-8")

        response = client.post("/api/v1/students/import", content=body, headers={"Content-Type": "text/csv"})

        assert response.json() == {"succeeded": 1, "failed": 0, "skipped": 1, "failed_ids": []}
        assert store.documents("students")["003"]["roomId"] == "R1"

    def test_import_rejects_non_utf8(self, client):
        response = client.post("/api/v1/students/import", content=b"\xff\xfe\x00N", headers={"Content-Type": "text/csv"})

        assert response.status_code == 400

    def test_import_template(self, client):
        response = client.get("/api/v1/students/import-template")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.content.startswith("\ufeff".encode("utf-8"))

    def test_bulk_delete(self, client, store):
        response = client.post("/api/v1/students/bulk-delete", json={"selected_ids": ["001", "002"]})

        assert response.json() == {"deleted": 2, "requested": 2}
        assert store.documents("students") == {}


class TestSessionEndpoints:

    def test_admin_login_and_logout(self, client, storage):
        response = client.post("/api/v1/auth/admin", json={"username": "admin", "password": "admin123"})

        assert response.status_code == 200
        assert response.json()["view"] == "ADMIN"
        assert json.loads(storage.get_item("examsy_auth")) == {"role": "ADMIN"}

        assert client.post("/api/v1/auth/logout").json()["view"] == "ANONYMOUS"
        assert storage.get_item("examsy_auth") is None

    def test_admin_wrong_password(self, client):
        response = client.post("/api/v1/auth/admin", json={"username": "admin", "password": "nope"})

        assert response.status_code == 401

    def test_proctor_login(self, client):
        response = client.post("/api/v1/auth/proctor", json={"username": "proctor1", "password": "pw1"})

        assert response.json() == {"view": "PROCTOR", "student_id": None, "session_id": None, "room_id": "R1"}

    def test_double_login_conflicts(self, client):
        client.post("/api/v1/auth/admin", json={"username": "admin", "password": "admin123"})

        response = client.post("/api/v1/auth/proctor", json={"username": "proctor1", "password": "pw1"})

        assert response.status_code == 409

    def test_student_exam_flow(self, client, store):
        response = client.post("/api/v1/auth/student", json={"nis": "001", "password": "pw", "pin": "abc12"})

        assert response.status_code == 200
        assert response.json()["view"] == "STUDENT_EXAM"
        assert store.documents("students")["001"]["status"] == "IN_PROGRESS"

        assert client.post("/api/v1/auth/logout").status_code == 409
        assert client.post("/api/v1/auth/violation").json() == {"stored": True}
        assert store.documents("students")["001"]["violations"] == 1

        body = client.post("/api/v1/auth/finish").json()
        assert body["stored"] is True
        assert body["session"]["view"] == "ANONYMOUS"
        assert store.documents("students")["001"]["status"] == "FINISHED"
        assert store.documents("students")["001"]["violations"] == 0

    def test_blocked_student_rejected(self, client):
        response = client.post("/api/v1/auth/student", json={"nis": "002", "password": "pw", "pin": "ABC12"})

        assert response.status_code == 401

    def test_student_login_offline(self, client, store):
        store.offline = True

        response = client.post("/api/v1/auth/student", json={"nis": "001", "password": "pw", "pin": "ABC12"})

        assert response.status_code == 503
        state = client.get("/api/v1/state").json()
        assert state["session"]["view"] == "ANONYMOUS"
        assert state["last_error"]["category"] == "transport"

    def test_finish_outside_exam_conflicts(self, client):
        assert client.post("/api/v1/auth/finish").status_code == 409


class TestRestoredCredential:

    def test_stale_proctor_credential_heals(self, store):
        storage = MemoryLocalStorage({"examsy_auth": json.dumps({"role": "PROCTOR", "roomId": "R9"})})
        app = create_app(config=Settings(STORE_BACKEND="memory"), store=store, storage=storage)

        with TestClient(app) as client:
            body = wait_until(client, "/api/v1/state", lambda body: body["session"]["view"] == "ANONYMOUS")

        assert body["session"]["view"] == "ANONYMOUS"
        assert storage.get_item("examsy_auth") is None


class TestLiveUpdates:

    def test_initial_messages_and_ping(self, client):
        with client.websocket_connect("/ws/live") as websocket:
            first = websocket.receive_json()
            assert first["type"] == "connection_confirmed"
            assert first["initial_load_complete"] is True

            snapshots = [websocket.receive_json() for _ in range(3)]
            assert sorted(message["collection"] for message in snapshots) == ["rooms", "sessions", "students"]
            assert all(message["type"] == "snapshot" for message in snapshots)

            state = websocket.receive_json()
            assert state == {"type": "session_state", "timestamp": state["timestamp"], "data": {
                "view": "ANONYMOUS", "student_id": None, "session_id": None, "room_id": None
            }}

            websocket.send_text(json.dumps({"type": "ping"}))
            assert websocket.receive_json()["type"] == "pong"

            websocket.send_text(json.dumps({"type": "subscribe"}))
            assert websocket.receive_json()["type"] == "error"
