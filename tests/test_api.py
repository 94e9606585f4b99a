from dataclasses import replace

import pytest

from api.app import create_app
from config import settings

API_KEY = "test-api-key"
HEADERS = {"x-api-key": API_KEY}


@pytest.fixture
def client(monkeypatch, controller):
    monkeypatch.setattr(settings, "API_KEY", API_KEY)
    app = create_app(controller=controller)
    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


def _reading(pump_id, reading_type, value, shift_id="SH-1"):
    return {"shift_id": shift_id, "pump_id": pump_id, "reading_type": reading_type,
            "recorded_at": "2024-03-01T06:00:00Z", "electric_meter": value}


def test_health_needs_no_key(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_api_key_is_required(client):
    assert client.get("/api/v1/reconciliations/stats").status_code == 401
    assert client.get("/api/v1/reconciliations/stats", headers={"x-api-key": "wrong"}).status_code == 401


def test_group_readings(client):
    payload = {
        "pump_readings": [
            _reading("P1", "START", 1000),
            _reading("P1", "END", 1250),
            _reading("P2", "START", 50),
            _reading("P3", "END", 10),
            _reading("P3", "END", 11),
        ],
        "tank_readings": [
            {"shift_id": "SH-1", "tank_id": "T1", "reading_type": "START",
             "recorded_at": "2024-03-01T06:00:00", "volume": "5000", "temperature": 21.5},
        ],
    }

    response = client.post("/api/v1/readings/group", json=payload, headers=HEADERS)

    assert response.status_code == 200
    body = response.get_json()
    assert [group["asset_id"] for group in body["complete"]] == ["P1"]
    assert sorted((item["asset_id"], item["missing"]) for item in body["incomplete"]) == [("P2", "END"), ("T1", "END")]
    assert body["anomalies"][0]["asset_id"] == "P3"
    assert body["anomalies"][0]["counts"] == {"START": 0, "END": 2}


def test_group_readings_rejects_bad_payload(client):
    payload = {"pump_readings": [_reading("P1", "MIDDLE", 1000)]}

    response = client.post("/api/v1/readings/group", json=payload, headers=HEADERS)

    assert response.status_code == 400
    assert response.get_json()["error"] == "Bad Request"


def test_group_readings_requires_json(client):
    response = client.post("/api/v1/readings/group", data="not json", headers=HEADERS)

    assert response.status_code == 400


def test_calculate_then_fetch(client, data_source, make_shift):
    data_source.put(make_shift(closing=4685))

    created = client.post("/api/v1/reconciliations/shift/SH-1", json={"recorded_by": "supervisor"}, headers=HEADERS)

    assert created.status_code == 201
    body = created.get_json()
    assert body["status"] == "DISCREPANCY"
    assert body["severity"] == "CRITICAL"
    assert body["tanks"][0]["variance_percentage"] == 5.0
    assert body["recorded_by"] == "supervisor"

    by_shift = client.get("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)
    by_id = client.get(f"/api/v1/reconciliations/{body['reconciliation_id']}", headers=HEADERS)
    assert by_shift.get_json() == body
    assert by_id.get_json() == body


def test_second_calculation_conflicts(client, data_source, make_shift):
    data_source.put(make_shift())
    client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)

    response = client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)

    assert response.status_code == 409
    assert response.get_json()["error"] == "DuplicateReconciliationError"


def test_incomplete_readings_are_unprocessable(client, data_source, make_shift):
    snapshot = make_shift()
    data_source.put(replace(snapshot, tank_readings=snapshot.tank_readings[:1]))

    response = client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)

    assert response.status_code == 422
    body = response.get_json()
    assert body["error"] == "IncompleteReadingsError"
    assert body["details"]["missing"] == [{"asset_kind": "TANK", "asset_id": "T1", "missing": ["END"]}]


def test_unknown_shift_and_record(client):
    assert client.post("/api/v1/reconciliations/shift/SH-404", headers=HEADERS).status_code == 404
    assert client.get("/api/v1/reconciliations/shift/SH-404", headers=HEADERS).status_code == 404

    response = client.get("/api/v1/reconciliations/does-not-exist", headers=HEADERS)
    assert response.status_code == 404
    assert response.get_json()["error"] == "ReconciliationNotFoundError"


def test_resolve(client, data_source, make_shift):
    data_source.put(make_shift(closing=4685))
    record = client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS).get_json()
    url = f"/api/v1/reconciliations/{record['reconciliation_id']}/resolve"

    response = client.patch(url, json={"note": "Calibration drift on P1", "resolved_by": "manager"}, headers=HEADERS)

    assert response.status_code == 200
    assert response.get_json()["status"] == "RESOLVED"
    assert response.get_json()["notes"] == ["Calibration drift on P1"]

    again = client.patch(url, json={"note": "twice"}, headers=HEADERS)
    assert again.status_code == 409
    assert again.get_json()["error"] == "InvalidTransitionError"


def test_resolve_pending_conflicts(client, controller):
    placeholder = controller.open("SH-7")

    response = client.patch(f"/api/v1/reconciliations/{placeholder.reconciliation_id}/resolve",
                            json={}, headers=HEADERS)

    assert response.status_code == 409


def test_stats_and_history(client, data_source, make_shift):
    data_source.put(make_shift(shift_id="SH-1"))
    data_source.put(make_shift(shift_id="SH-2", closing=4685))
    client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)
    client.post("/api/v1/reconciliations/shift/SH-2", headers=HEADERS)

    stats = client.get("/api/v1/reconciliations/stats", headers=HEADERS).get_json()
    assert stats["total"] == 2
    assert stats["by_severity"] == {"NORMAL": 1, "WARNING": 0, "CRITICAL": 1}
    assert stats["by_status"]["COMPLETED"] == 1

    filtered = client.get("/api/v1/reconciliations/stats?severity=CRITICAL", headers=HEADERS).get_json()
    assert filtered["total"] == 1

    history = client.get("/api/v1/reconciliations/tank/T1/history?limit=1", headers=HEADERS).get_json()
    assert history["summary"]["shift_count"] == 2
    assert history["summary"]["critical_count"] == 1
    assert len(history["history"]) == 1


def test_invalid_filters_are_bad_requests(client):
    response = client.get("/api/v1/reconciliations/stats?start_date=2024-03-05&end_date=2024-03-01",
                          headers=HEADERS)
    assert response.status_code == 400

    assert client.get("/api/v1/reconciliations/stats?status=DONE", headers=HEADERS).status_code == 400
    assert client.get("/api/v1/reconciliations/tank/T1/history?limit=0", headers=HEADERS).status_code == 400


def test_list_reconciliations_with_filters_and_paging(client, data_source, make_shift):
    data_source.put(make_shift(shift_id="SH-1"))
    data_source.put(make_shift(shift_id="SH-2", closing=4685))
    data_source.put(make_shift(shift_id="SH-3", station_id="ST-2"))
    for shift_id in ("SH-1", "SH-2", "SH-3"):
        client.post(f"/api/v1/reconciliations/shift/{shift_id}", headers=HEADERS)

    everything = client.get("/api/v1/reconciliations", headers=HEADERS).get_json()
    assert everything["total"] == 3
    assert everything["page"] == 1
    assert len(everything["reconciliations"]) == 3

    station = client.get("/api/v1/reconciliations?station_id=ST-1&severity=CRITICAL", headers=HEADERS).get_json()
    assert [record["shift_id"] for record in station["reconciliations"]] == ["SH-2"]

    second_page = client.get("/api/v1/reconciliations?limit=2&page=2", headers=HEADERS).get_json()
    assert second_page["total"] == 3
    assert len(second_page["reconciliations"]) == 1

    assert client.get("/api/v1/reconciliations?limit=1001", headers=HEADERS).status_code == 400
    assert client.get("/api/v1/reconciliations?page=0", headers=HEADERS).status_code == 400


def test_validate_shift_readings(client, data_source, repository, make_shift):
    snapshot = make_shift()
    data_source.put(make_shift(shift_id="SH-OK"))
    data_source.put(replace(snapshot, tank_readings=snapshot.tank_readings[:1]))

    clean = client.get("/api/v1/reconciliations/shift/SH-OK/validate", headers=HEADERS)
    broken = client.get("/api/v1/reconciliations/shift/SH-1/validate", headers=HEADERS)

    assert clean.status_code == 200
    assert clean.get_json()["is_valid"] is True
    assert clean.get_json()["preview"]["severity"] == "NORMAL"
    assert broken.get_json()["is_valid"] is False
    assert broken.get_json()["missing"] == [{"asset_kind": "TANK", "asset_id": "T1", "missing": ["END"]}]
    assert repository.list() == []

    assert client.get("/api/v1/reconciliations/shift/SH-404/validate", headers=HEADERS).status_code == 404


def test_stats_include_rates(client, data_source, make_shift):
    data_source.put(make_shift(shift_id="SH-1"))
    data_source.put(make_shift(shift_id="SH-2", closing=4685))
    client.post("/api/v1/reconciliations/shift/SH-1", headers=HEADERS)
    client.post("/api/v1/reconciliations/shift/SH-2", headers=HEADERS)

    stats = client.get("/api/v1/reconciliations/stats", headers=HEADERS).get_json()

    assert stats["critical_rate"] == 50.0
    assert stats["warning_rate"] == 0.0
    assert stats["compliance_rate"] == 50.0
    assert stats["average_variance_percentage"] == 2.5
