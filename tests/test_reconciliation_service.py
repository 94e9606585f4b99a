from dataclasses import replace

import pytest

from core.models import ReconciliationStatus
from reconciliation_service.reconciliation_service import ReconciliationService


@pytest.fixture
def service(controller):
    return ReconciliationService(controller=controller, interval_seconds=1)


def test_cycle_reconciles_closed_shifts_awaiting_calculation(service, controller, data_source, repository, make_shift):
    data_source.put(make_shift(shift_id="SH-1"))
    data_source.put(make_shift(shift_id="SH-2", closing=4685))
    data_source.put(make_shift(shift_id="SH-OPEN"), closed=False)
    already = controller.calculate("SH-1")

    summary = service.run_cycle()

    assert summary["failed"] == {}
    assert len(summary["calculated"]) == 1
    assert repository.get_by_shift("SH-2").status is ReconciliationStatus.DISCREPANCY
    assert repository.get_by_shift("SH-1") == already
    assert repository.get_by_shift("SH-OPEN") is None


def test_failures_are_reported_per_shift_and_do_not_stop_the_cycle(service, data_source, repository, make_shift):
    broken = make_shift(shift_id="SH-1")
    data_source.put(replace(broken, tank_readings=broken.tank_readings[:1]))
    data_source.put(make_shift(shift_id="SH-2"))

    summary = service.run_cycle()

    assert summary["failed"]["SH-1"]["error"] == "IncompleteReadingsError"
    assert len(summary["calculated"]) == 1
    assert repository.get_by_shift("SH-1") is None

    # Still pending on the next run until the readings are fixed
    assert service.pending_shift_ids() == ["SH-1"]


def test_pending_placeholders_are_picked_up(service, controller, data_source, repository, make_shift):
    placeholder = controller.open("SH-1")
    data_source.put(make_shift(shift_id="SH-1"))

    service.run_cycle()

    record = repository.get_by_shift("SH-1")
    assert record.reconciliation_id == placeholder.reconciliation_id
    assert record.status is ReconciliationStatus.COMPLETED
    assert record.recorded_by == "ReconciliationService"


def test_unexpected_errors_are_contained(service, controller, data_source, make_shift, monkeypatch):
    data_source.put(make_shift(shift_id="SH-1"))

    def explode(shift_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(data_source, "load_shift", explode)

    summary = service.run_cycle()

    assert summary["failed"]["SH-1"] == {"error": "RuntimeError", "message": "database went away"}
