import base64
from unittest import mock

import httpx
import numpy as np
import pytest
from fastapi.testclient import TestClient

from attendance_trust.config import settings
from attendance_trust.dependencies import (
    get_attendance_trust_service, get_fraud_engine, get_location_trust_service
)
from attendance_trust.main import app
from attendance_trust.services.attendance_trust_service import AttendanceTrustService
from attendance_trust.services.location_trust_service import LocationTrustService
from attendance_trust.services.network_location_service import NetworkLocationService

from factories import NOON, checkerboard_frame, flat_face, live_face, uniform_frame

ADMIN = {"X-API-Key": settings.API_KEY}


def encode(array: np.ndarray) -> dict:
    return {
        "data": base64.b64encode(array.tobytes()).decode(),
        "shape": list(array.shape),
        "dtype": str(array.dtype),
    }


def face_payload(face):
    return {"landmarks": [list(p) for p in face.landmarks], "expressions": face.expressions}


def embedding_payload(value=0.1, length=128):
    return {"vector": [value] * length, "algorithm_id": "face-api.js-facenet"}


def attempt_payload(frame, face, device="device-aaaa"):
    return {
        "actor_id": "student-1",
        "device_fingerprint": device,
        "gps_fix": {"lat": 40.0, "lng": -74.0, "accuracy_meters": 10.0, "timestamp": NOON.isoformat()},
        "geofences": [{"kind": "radius", "center": {"lat": 40.0, "lng": -74.0}, "radius_meters": 200}],
        "frame": encode(frame),
        "faces": [face_payload(face)],
        "live_embedding": embedding_payload(),
        "registered_embedding": embedding_payload(),
        "timestamp": NOON.isoformat(),
    }


@pytest.fixture
def client(store, engine):
    offline = NetworkLocationService(
        providers=[],
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        use_cache=False
    )
    location = LocationTrustService(resolver=offline, store=store)
    trust = AttendanceTrustService(location=location, engine=engine)

    app.dependency_overrides[get_fraud_engine] = lambda: engine
    app.dependency_overrides[get_location_trust_service] = lambda: location
    app.dependency_overrides[get_attendance_trust_service] = lambda: trust
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_root(client):
    body = client.get("/").json()
    assert body["status"] == "running"
    assert body["service"] == "Attendance Trust Engine"


def test_health_reports_each_backend(client):
    body = client.get("/ai/health").json()
    assert body["trust_store"] == "healthy"
    assert body["database"] == "healthy"
    assert body["redis"] == "unhealthy"
    assert body["embedding_algorithms"] == 1


def test_geofence_check(client):
    fence = {"kind": "radius", "center": {"lat": 40.0, "lng": -74.0}, "radius_meters": 50}
    inside = client.post("/location/geofence/check", json={"point": {"lat": 40.0, "lng": -74.0}, "geofences": [fence]})
    empty = client.post("/location/geofence/check", json={"point": {"lat": 40.0, "lng": -74.0}, "geofences": []})

    assert inside.json()["inside"] is True
    assert empty.json()["inside"] is False


def test_location_verify_remembers_last_fix(client, store):
    payload = {
        "actor_id": "student-1",
        "gps_fix": {"lat": 40.0, "lng": -74.0, "accuracy_meters": 10.0, "timestamp": NOON.isoformat()},
    }
    response = client.post("/location/verify", json=payload)

    assert response.status_code == 200
    assert response.json()["is_valid"] is True
    assert store.get_last_fix("student-1") is not None


class TestBiometrics:
    def test_liveness_without_faces(self, client):
        response = client.post("/biometrics/liveness/analyze", json={"frame": encode(uniform_frame())})
        assert response.status_code == 200
        assert response.json()["result"]["is_live"] is False
        assert response.json()["result"]["confidence"] == 0.0

    def test_liveness_session_round_trip(self, client):
        body = {"frame": encode(checkerboard_frame()), "faces": [face_payload(live_face())]}
        first = client.post("/biometrics/liveness/analyze", json=body).json()
        assert first["result"]["is_live"] is True

        second = client.post("/biometrics/liveness/analyze", json={**body, "session": first["session"]}).json()
        assert len(second["session"]["landmark_history"]) == 2

    def test_bad_base64_is_rejected(self, client):
        frame = {"data": "not base64!", "shape": [2, 2], "dtype": "uint8"}
        response = client.post("/biometrics/liveness/analyze", json={"frame": frame})
        assert response.status_code == 400

    def test_buffer_size_must_match_shape(self, client):
        frame = encode(uniform_frame(size=4))
        frame["shape"] = [5, 5]
        response = client.post("/biometrics/liveness/analyze", json={"frame": frame})
        assert response.status_code == 400

    def test_unsupported_dtype_is_rejected(self, client):
        frame = encode(uniform_frame(size=4))
        frame["dtype"] = "complex128"
        assert client.post("/biometrics/liveness/analyze", json={"frame": frame}).status_code == 400

    def test_compare_identical(self, client):
        response = client.post(
            "/biometrics/face/compare",
            json={"registered": embedding_payload(), "live": embedding_payload()}
        )
        body = response.json()
        assert body["match"] is True
        assert body["similarity"] == 1.0
        assert body["distance"] == 0.0

    def test_compare_refused_has_null_distance(self, client):
        response = client.post(
            "/biometrics/face/compare",
            json={"registered": embedding_payload(), "live": embedding_payload(length=64)}
        )
        body = response.json()
        assert body["match"] is False
        assert body["distance"] is None

    def test_validate(self, client):
        assert client.post("/biometrics/face/validate", json={"embedding": embedding_payload()}).json() == {"valid": True}
        assert client.post(
            "/biometrics/face/validate", json={"embedding": embedding_payload(length=10)}
        ).json() == {"valid": False}

    def test_average(self, client):
        response = client.post(
            "/biometrics/face/average",
            json={"embeddings": [embedding_payload(0.0), embedding_payload(0.2)]}
        )
        assert response.status_code == 200
        assert response.json()["vector"] == pytest.approx([0.1] * 128)

        assert client.post("/biometrics/face/average", json={"embeddings": []}).status_code == 422


class TestAttendanceAndFraudAdmin:
    def test_genuine_attempt_is_accepted(self, client):
        response = client.post("/attendance/attempts", json=attempt_payload(checkerboard_frame(), live_face()))

        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] is True
        assert body["status"] == "accepted"
        assert body["identity"]["match"] is True

    def test_photo_attack_then_admin_review(self, client):
        response = client.post("/attendance/attempts", json=attempt_payload(uniform_frame(), flat_face()))
        body = response.json()
        assert body["status"] == "blocked"
        assert "face_spoofing_photo" in body["evaluation"]["indicators"]

        records = client.get("/fraud/records", params={"actor_id": "student-1"}).json()
        assert len(records) == 1
        record_id = records[0]["id"]

        assert client.get("/fraud/blocklist").json()["blocked_devices"] == ["device-aaaa"]

        assert client.post(f"/fraud/records/{record_id}/resolve", json={"notes": "reviewed"}).status_code == 401
        resolved = client.post(f"/fraud/records/{record_id}/resolve", json={"notes": "reviewed"}, headers=ADMIN)
        assert resolved.status_code == 200
        assert resolved.json()["resolved"] is True
        assert client.get("/fraud/records", params={"unresolved_only": True}).json() == []

        assert client.delete("/fraud/blocklist/devices/device-aaaa").status_code == 401
        assert client.delete("/fraud/blocklist/devices/device-aaaa", headers=ADMIN).status_code == 200
        assert client.delete("/fraud/blocklist/devices/device-aaaa", headers=ADMIN).status_code == 404

        stats = client.get("/fraud/statistics").json()
        assert stats["fraud_attempts"] == 1
        assert stats["fraud_by_type"] == {"face_spoofing": 1}

    def test_resolving_unknown_record(self, client):
        response = client.post("/fraud/records/fraud_missing/resolve", json={}, headers=ADMIN)
        assert response.status_code == 404

    def test_unblock_ip(self, client, engine):
        engine.block_ip("1.1.1.1")
        assert client.delete("/fraud/blocklist/ips/1.1.1.1", headers=ADMIN).status_code == 200
        assert not engine.is_ip_blocked("1.1.1.1")

    def test_export_requires_api_key(self, client):
        client.post("/attendance/attempts", json=attempt_payload(checkerboard_frame(), live_face()))

        assert client.get("/fraud/export").status_code == 401
        body = client.get("/fraud/export", headers=ADMIN).json()
        assert len(body["attempts"]) == 1
        assert body["fraud_records"] == []
        assert body["statistics"]["total_attempts"] == 1


class TestClientAddress:
    def test_socket_peer_is_never_blocklisted(self, client, engine):
        response = client.post("/attendance/attempts", json=attempt_payload(uniform_frame(), flat_face()))

        assert response.json()["status"] == "blocked"
        assert engine.store.blocked_ips() == set()

    def test_configured_forwarded_header_supplies_client_ip(self, client, engine):
        with mock.patch.object(settings, "CLIENT_IP_HEADER", "X-Forwarded-For"):
            response = client.post(
                "/attendance/attempts",
                json=attempt_payload(uniform_frame(), flat_face()),
                headers={"X-Forwarded-For": "1.1.1.1, 10.0.0.1"}
            )

        assert response.json()["status"] == "blocked"
        assert engine.store.blocked_ips() == {"1.1.1.1"}

    def test_forwarded_header_is_ignored_unless_configured(self, client, engine):
        client.post(
            "/attendance/attempts",
            json=attempt_payload(uniform_frame(), flat_face()),
            headers={"X-Forwarded-For": "1.1.1.1"}
        )
        assert engine.store.blocked_ips() == set()

    def test_garbage_forwarded_header_gives_no_address(self, client, engine):
        with mock.patch.object(settings, "CLIENT_IP_HEADER", "X-Forwarded-For"):
            client.post(
                "/attendance/attempts",
                json=attempt_payload(uniform_frame(), flat_face()),
                headers={"X-Forwarded-For": "unknown"}
            )
        assert engine.store.blocked_ips() == set()

    def test_address_in_body_wins(self, client, engine):
        payload = {**attempt_payload(uniform_frame(), flat_face()), "ip_address": "8.8.8.8"}
        with mock.patch.object(settings, "CLIENT_IP_HEADER", "X-Forwarded-For"):
            client.post("/attendance/attempts", json=payload, headers={"X-Forwarded-For": "1.1.1.1"})
        assert engine.store.blocked_ips() == {"8.8.8.8"}
