from datetime import timedelta

from src.config import settings
from src.models import Ticket
from src.access.offline_queue import OfflineScanQueue

BASE = "/api/v1/access"


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "healthy", "database": "ok"}


def test_validate_requires_staff_token(api_client, ferry):
    response = api_client.post(f"{BASE}/scan/validate", json={"credential": ferry.ticket_code})

    assert response.status_code == 401


def test_validate_rejects_bad_token(api_client, ferry):
    response = api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": ferry.ticket_code},
        headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == 401


def test_validate_ticket_then_already_used(api_client, ferry, agent_headers):
    body = {"credential": ferry.ticket_code, "device_id": ferry.device_id, "trip_id": "TR1"}

    first = api_client.post(f"{BASE}/scan/validate", json=body, headers=agent_headers)
    second = api_client.post(f"{BASE}/scan/validate", json=body, headers=agent_headers)

    assert first.status_code == 200
    payload = first.json()
    assert payload["status"] == "success"
    assert payload["code"] == "BOARDING_AUTHORIZED"
    assert payload["passenger"]["name"] == "Fatou Sarr"
    assert payload["booking_reference"] == "REF123"
    assert "badge_info" not in payload

    assert second.status_code == 400
    assert second.json()["code"] == "ALREADY_USED"


def test_departed_warning_is_http_200(api_client, ferry, agent_headers):
    response = api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": ferry.departed_code, "device_id": ferry.device_id},
        headers=agent_headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "warning"
    assert response.json()["code"] == "DEPARTED"


def test_validate_unknown_device(api_client, ferry, agent_headers):
    response = api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": ferry.ticket_code, "device_id": 9999},
        headers=agent_headers
    )

    assert response.status_code == 404


def test_validate_rejects_empty_credential(api_client, ferry, agent_headers):
    response = api_client.post(f"{BASE}/scan/validate", json={"credential": ""}, headers=agent_headers)

    assert response.status_code == 422


def test_device_scan_requires_device_token(api_client, ferry):
    missing = api_client.post(f"{BASE}/device/scan", json={"uid": "RFID-1"})
    unknown = api_client.post(f"{BASE}/device/scan", json={"uid": "RFID-1"}, headers={"X-Device-Token": "nope"})

    assert missing.status_code == 401
    assert unknown.status_code == 401


def test_device_scan_opens_then_refuses(api_client, ferry):
    headers = {"X-Device-Token": ferry.device_token}

    first = api_client.post(f"{BASE}/device/scan", json={"uid": "RFID-1", "direction": "in"}, headers=headers)
    second = api_client.post(f"{BASE}/device/scan", json={"uid": "RFID-1", "direction": "in"}, headers=headers)

    assert first.status_code == 200
    assert first.json()["open"] is True
    assert first.json()["passenger_name"] == ferry.owner_name

    assert second.status_code == 400
    assert second.json()["open"] is False
    assert second.json()["status"] == "error"


def test_device_scan_keeps_turnstile_closed_on_departed_warning(api_client, ferry, db):
    headers = {"X-Device-Token": ferry.device_token}

    responses = [
        api_client.post(f"{BASE}/device/scan", json={"uid": ferry.departed_code}, headers=headers)
        for _ in range(2)
    ]

    for response in responses:
        assert response.status_code == 400
        assert response.json()["status"] == "warning"
        assert response.json()["open"] is False

    db.expire_all()
    assert db.get(Ticket, "T4").status == "issued"


def test_bypass_requires_supervisor(api_client, ferry, agent_headers, supervisor_headers):
    body = {"credential": ferry.cancelled_code, "reason": "Rebooked at the counter", "device_id": ferry.device_id}

    denied = api_client.post(f"{BASE}/scan/bypass", json=body, headers=agent_headers)
    allowed = api_client.post(f"{BASE}/scan/bypass", json=body, headers=supervisor_headers)

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["code"] == "BYPASS_AUTHORIZED"
    assert allowed.json()["details"]["previous_status"] == "cancelled"


def test_bypass_reason_is_required(api_client, ferry, supervisor_headers):
    response = api_client.post(
        f"{BASE}/scan/bypass",
        json={"credential": ferry.cancelled_code, "reason": ""},
        headers=supervisor_headers
    )

    assert response.status_code == 422


def test_sync_endpoint(api_client, ferry, agent_headers):
    start = ferry.now - timedelta(hours=1)
    body = {
        "device_id": ferry.device_id,
        "validations": [
            {"credential": "RFID-1", "timestamp": (start + timedelta(seconds=30)).isoformat(), "scan_id": "b"},
            {"credential": "RFID-1", "timestamp": start.isoformat(), "scan_id": "a"},
        ]
    }

    first = api_client.post(f"{BASE}/scan/sync", json=body, headers=agent_headers)
    second = api_client.post(f"{BASE}/scan/sync", json=body, headers=agent_headers)

    assert first.status_code == 200
    assert first.json()["summary"] == {"total": 2, "success": 1, "warnings": 0, "errors": 1, "duplicates": 0}
    assert [d["code"] for d in first.json()["details"]] == ["ACCESS_GRANTED", "ANTI_PASSBACK"]
    assert second.json()["summary"]["duplicates"] == 2


def test_sync_batch_too_large(api_client, ferry, agent_headers, monkeypatch):
    monkeypatch.setattr(settings, "OFFLINE_BATCH_MAX_SIZE", 1)
    start = ferry.now - timedelta(hours=1)
    body = {
        "device_id": ferry.device_id,
        "validations": [
            {"credential": "RFID-1", "timestamp": start.isoformat()},
            {"credential": "RFID-2", "timestamp": start.isoformat()},
        ]
    }

    response = api_client.post(f"{BASE}/scan/sync", json=body, headers=agent_headers)

    assert response.status_code == 413


def test_offline_queue_against_api(api_client, ferry, agent_headers, tmp_path):
    api_client.headers.update(agent_headers)
    queue = OfflineScanQueue(str(tmp_path / "queue.json"), client=api_client, device_id=ferry.device_id)
    queue.enqueue(ferry.ticket_code, trip_id="TR1", timestamp=ferry.now - timedelta(minutes=20))
    queue.enqueue("RFID-2", timestamp=ferry.now - timedelta(minutes=19))

    assert queue.flush() is True
    assert queue.get_queue() == []

    boarding = api_client.get(f"{BASE}/scan/tickets/T1/boarding")
    assert boarding.status_code == 200
    assert boarding.json()["result"] == "granted"


def test_device_statistics(api_client, ferry, agent_headers):
    scan = {"credential": ferry.ticket_code, "device_id": ferry.device_id}
    api_client.post(f"{BASE}/scan/validate", json=scan, headers=agent_headers)
    api_client.post(f"{BASE}/scan/validate", json=scan, headers=agent_headers)

    response = api_client.get(f"{BASE}/scan/statistics", params={"device_id": ferry.device_id}, headers=agent_headers)

    assert response.status_code == 200
    assert response.json()["total_scans"] == 2
    assert response.json()["granted"] == 1
    assert response.json()["denied"] == 1
    assert response.json()["success_rate"] == 50.0


def test_trip_statistics(api_client, ferry, agent_headers):
    api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": ferry.ticket_code, "device_id": ferry.device_id},
        headers=agent_headers
    )

    response = api_client.get(f"{BASE}/scan/statistics", params={"trip_id": "TR1"}, headers=agent_headers)

    assert response.json() == {"trip_id": "TR1", "total_passengers": 3, "boarding_count": 1}


def test_statistics_needs_a_target(api_client, ferry, agent_headers):
    response = api_client.get(f"{BASE}/scan/statistics", headers=agent_headers)

    assert response.status_code == 422


def test_trip_passengers(api_client, ferry, agent_headers):
    api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": ferry.ticket_code, "device_id": ferry.device_id},
        headers=agent_headers
    )

    response = api_client.get(f"{BASE}/scan/trip/TR1/passengers", headers=agent_headers)

    summary = response.json()
    assert summary["total_passengers"] == 3
    assert summary["boarded"] == 1
    assert summary["pending"] == 0
    statuses = {p["ticket_id"]: p["status"] for p in summary["passengers"]}
    assert statuses == {"T1": "boarded", "T2": "cancelled", "T3": "refunded"}


def test_boarding_lookup_before_boarding(api_client, ferry, agent_headers):
    response = api_client.get(f"{BASE}/scan/tickets/T1/boarding", headers=agent_headers)

    assert response.status_code == 404


def test_access_logs(api_client, ferry, agent_headers):
    api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": "RFID-1", "device_id": ferry.device_id},
        headers=agent_headers
    )
    api_client.post(
        f"{BASE}/scan/validate",
        json={"credential": "RFID-404", "device_id": ferry.device_id},
        headers=agent_headers
    )

    logs = api_client.get(f"{BASE}/logs", headers=agent_headers).json()

    assert len(logs) == 2
    assert logs[0]["deny_reason"] == "BADGE_NOT_FOUND"
    assert logs[1]["result"] == "granted"
    assert logs[1]["passenger_name"] == ferry.owner_name
    assert logs[1]["device_name"] == "Tourniquet Dakar 1"

    latest = api_client.get(
        f"{BASE}/logs/latest",
        params={"since": logs[1]["scanned_at"]},
        headers=agent_headers
    ).json()
    assert [entry["id"] for entry in latest] == [logs[0]["id"]]
