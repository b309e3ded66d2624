"""
Tests: wear status report (toolroom.services.wear_service) and its endpoints.

Setup strategy:
    Serials and production logs are inserted directly through the ORM so
    each test controls the exact usage history, status and tool_status.
"""

from datetime import datetime, timezone

import pytest

from toolroom.core.exceptions import ValidationError
from toolroom.models import db as _db
from toolroom.models.diecut import DiecutSerial, ProductionLogEntry, ResetEvent
from toolroom.services import wear_service
from toolroom.services.wear_service import StatusFilter

BASE = "/api/v1/diecuts"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _ts(year, month=1, day=1):
    return datetime(year, month, day, tzinfo=timezone.utc)


def _serial(sn, age, *, diecut_id="DC-100", status="N", tool_status="GOOD", diecut_type="DC"):
    s = DiecutSerial(
        diecut_sn=sn,
        diecut_id=diecut_id,
        diecut_age=age,
        status=status,
        tool_status=tool_status,
        diecut_type=diecut_type,
    )
    _db.session.add(s)
    _db.session.commit()
    return s


def _log(sn, *quantities, when=None):
    for qty in quantities:
        _db.session.add(ProductionLogEntry(diecut_sn=sn, counter_qty=qty, created_at=when or _ts(2024)))
    _db.session.commit()


def _by_sn(rows):
    return {r["diecut_sn"]: r for r in rows}


@pytest.fixture()
def fleet(diecut):
    """Two in-use SNs sharing one running window."""
    _serial("DC-100-0001", 100)
    _serial("DC-100-0002", 50)
    _log("DC-100-0001", 10, 20)
    _log("DC-100-0002", 30)


# ═════════════════════════════════════════════════════════════════════════════
# status_report
# ═════════════════════════════════════════════════════════════════════════════


def test_report_computes_running_window_thresholds(fleet):
    rows = _by_sn(wear_service.status_report())

    first = rows["DC-100-0001"]
    assert first["used"] == 30
    assert first["remain"] == 70
    assert first["near_expiry_threshold"] == 75
    assert first["priority"] == "2"

    second = rows["DC-100-0002"]
    assert second["used"] == 30
    assert second["remain"] == 20
    assert second["near_expiry_threshold"] == 18
    assert second["priority"] == "3"


def test_report_row_shape(fleet):
    row = _by_sn(wear_service.status_report())["DC-100-0001"]
    assert row["diecut_id"] == "DC-100"
    assert row["age"] == 100
    assert row["status"] == "N"
    assert row["diecut_type"] == "DC"
    assert row["open_modify_type"] is None
    assert row["physical_dimensions"] == {"blank_size_x": 420.0, "blank_size_y": 297.0}
    assert row["current_job"]["job_id"] is None


def test_usage_before_epoch_and_non_positive_quantities_ignored(diecut):
    _serial("DC-100-0001", 100)
    _log("DC-100-0001", 500, when=_ts(2018, 6, 1))
    _log("DC-100-0001", 0, -4, None)
    _log("DC-100-0001", 25)

    row = _by_sn(wear_service.status_report())["DC-100-0001"]
    assert row["used"] == 25
    assert row["remain"] == 75


def test_usage_before_last_reset_ignored(diecut):
    _serial("DC-100-0001", 100)
    _log("DC-100-0001", 40, when=_ts(2024, 1, 1))
    _db.session.add(ResetEvent(diecut_sn="DC-100-0001", reset_date=_ts(2024, 6, 1)))
    _db.session.commit()
    _log("DC-100-0001", 15, when=_ts(2024, 7, 1))

    row = _by_sn(wear_service.status_report())["DC-100-0001"]
    assert row["used"] == 15
    assert row["last_modified"].startswith("2024-06-01")


def test_retired_null_status_and_bad_tools_excluded(diecut):
    _serial("DC-100-0001", 100)
    _serial("DC-100-0002", 100, status="F")
    _serial("DC-100-0003", 100, status=None)
    _serial("DC-100-0004", 100, tool_status="BROKEN")

    assert set(_by_sn(wear_service.status_report())) == {"DC-100-0001"}


def test_retired_usage_still_feeds_window(diecut):
    _serial("DC-100-0001", 100, status="F")
    _serial("DC-100-0002", 50)
    _log("DC-100-0001", 10, 20)
    _log("DC-100-0002", 30)

    row = _by_sn(wear_service.status_report())["DC-100-0002"]
    assert row["near_expiry_threshold"] == 18


def test_filters_are_anded(fleet, actor):
    _serial("DC-100-0003", 80, diecut_type="BD")

    rows = wear_service.status_report(StatusFilter(diecut_types={"BD"}))
    assert [r["diecut_sn"] for r in rows] == ["DC-100-0003"]

    rows = wear_service.status_report(StatusFilter(diecut_id="DC-100", diecut_types={"DC"}, priority="2"))
    assert [r["diecut_sn"] for r in rows] == ["DC-100-0001"]

    assert wear_service.status_report(StatusFilter(diecut_id="NOPE")) == []


def test_filter_thresholds_independent_of_filters(fleet):
    rows = wear_service.status_report(StatusFilter(diecut_types={"DC"}, priority="3"))
    assert _by_sn(rows)["DC-100-0002"]["near_expiry_threshold"] == 18


def test_invalid_priority_filter_rejected():
    with pytest.raises(ValidationError):
        StatusFilter(priority="9")


def test_summary_counts(fleet):
    _serial("DC-100-0003", 10)
    _log("DC-100-0003", 12)

    summary = wear_service.status_summary()
    assert summary["total"] == 3
    assert summary["priorities"] == {"expired": 1, "near_expiry": 1, "good": 1}


# ═════════════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════════════


def test_status_endpoint(client, fleet):
    res = client.get(f"{BASE}/status?diecutType=DC,BD&priority=2")
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert [r["diecut_sn"] for r in body["data"]["rows"]] == ["DC-100-0001"]


def test_status_summary_endpoint(client, fleet):
    res = client.get(f"{BASE}/status/summary")
    assert res.status_code == 200
    assert res.get_json()["data"]["total"] == 2


def test_status_endpoint_bad_priority(client):
    res = client.get(f"{BASE}/status?priority=7")
    assert res.status_code == 400
    assert res.get_json()["success"] is False
