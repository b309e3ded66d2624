"""
Tests: modification workflow (toolroom.services.modification_service).

State machines exercised:
    cycle:        NONE → OPEN → CLOSED | CANCELLED
    type change:  NO_REQUEST → PENDING_APPROVAL → APPROVED | NO_REQUEST

Also covers repair validation, the blade-change counter, order cancel and
the approve rollback when the second write fails.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from toolroom.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from toolroom.models import db as _db
from toolroom.models.diecut import (
    CYCLE_TRANSITIONS,
    TYPE_CHANGE_TRANSITIONS,
    DiecutModification,
    DiecutSerial,
    validate_cycle_transition,
    validate_type_change_transition,
)
from toolroom.services import modification_service, serial_service

BASE = "/api/v1/diecuts"
SN = "DC-100-0001"


# ── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def serial(diecut, actor):
    serial_service.register_batch("DC-100", [SN], "DC", "N", actor)
    return _db.session.get(DiecutSerial, SN)


def _mods(sn=SN):
    _db.session.expire_all()
    return _db.session.query(DiecutModification).filter_by(diecut_sn=sn).order_by(DiecutModification.id).all()


def _serial(sn=SN):
    _db.session.expire_all()
    return _db.session.get(DiecutSerial, sn)


# ═════════════════════════════════════════════════════════════════════════════
# Transition tables
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("old,new", [
    (old, new) for old, targets in CYCLE_TRANSITIONS.items() for new in targets
])
def test_cycle_valid_edges(old, new):
    assert validate_cycle_transition(old, new)


@pytest.mark.parametrize("old,new", [
    ("NONE", "CLOSED"), ("NONE", "CANCELLED"), ("CLOSED", "CANCELLED"), ("CANCELLED", "CLOSED"),
])
def test_cycle_invalid_edges(old, new):
    assert not validate_cycle_transition(old, new)


@pytest.mark.parametrize("old,new", [
    (old, new) for old, targets in TYPE_CHANGE_TRANSITIONS.items() for new in targets
])
def test_type_change_valid_edges(old, new):
    assert validate_type_change_transition(old, new)


@pytest.mark.parametrize("old,new", [
    ("NO_REQUEST", "APPROVED"), ("APPROVED", "NO_REQUEST"), ("APPROVED", "APPROVED"),
])
def test_type_change_invalid_edges(old, new):
    assert not validate_type_change_transition(old, new)


# ═════════════════════════════════════════════════════════════════════════════
# save_modification
# ═════════════════════════════════════════════════════════════════════════════


class TestSaveModification:
    def test_creates_missing_sn_with_sibling_type(self, serial, actor):
        result = modification_service.save_modification(
            "DC-100", "DC-100-0002", {"blade_type": "S", "diecut_age": 900}, actor,
        )
        assert result["created"] is True
        new = _serial("DC-100-0002")
        assert new.diecut_type == "DC"
        assert new.diecut_age == 900
        mod = _mods("DC-100-0002")[0]
        assert mod.start_time.isoformat() == "1900-01-02"
        assert mod.cycle_state == "OPEN"

    def test_creates_sn_without_siblings_with_null_type(self, diecut, actor):
        modification_service.save_modification("DC-100", "DC-100-0001", {}, actor)
        assert _serial("DC-100-0001").diecut_type is None

    def test_updates_latest_row_and_end_time_closes(self, serial, actor):
        result = modification_service.save_modification(
            "DC-100", SN,
            {"start_time": "2026-03-01", "end_time": "2026-03-05", "blade_type": "M",
             "multi_blade_reason": "WORN", "remark": "done"},
            actor,
        )
        assert result["created"] is False
        mods = _mods()
        assert len(mods) == 1
        assert mods[0].cycle_state == "CLOSED"
        assert mods[0].start_time.isoformat() == "2026-03-01"
        assert mods[0].blade_type == "M"

    def test_cancelled_row_cannot_be_closed(self, serial, actor):
        modification_service.cancel_order("DC-100", SN, actor)
        with pytest.raises(InvalidTransitionError):
            modification_service.save_modification("DC-100", SN, {"end_time": "2026-03-05"}, actor)

    def test_missing_ids_rejected(self, actor):
        with pytest.raises(ValidationError):
            modification_service.save_modification("DC-100", "", {}, actor)

    def test_bulk_validates_every_item_first(self, serial, actor):
        with pytest.raises(ValidationError):
            modification_service.save_modifications(
                [{"diecut_id": "DC-100", "diecut_sn": SN, "remark": "x"}, {"diecut_id": "DC-100"}],
                actor,
            )
        assert _mods()[0].remark is None

    def test_endpoint_single_and_bulk(self, client, serial):
        res = client.post(f"{BASE}/modifications", json={"diecutId": "DC-100", "diecutSN": SN, "bladeType": "S"})
        assert res.status_code == 200
        assert res.get_json()["message"] == "Blade data updated"

        res = client.post(f"{BASE}/modifications", json=[
            {"diecutId": "DC-100", "diecutSN": SN, "remark": "a"},
            {"diecutId": "DC-100", "diecutSN": "DC-100-0002", "remark": "b"},
        ])
        assert res.status_code == 200
        assert len(res.get_json()["data"]["results"]) == 2


# ═════════════════════════════════════════════════════════════════════════════
# Orders
# ═════════════════════════════════════════════════════════════════════════════


class TestOrders:
    def test_repair_requires_problem_description(self, serial, actor):
        with pytest.raises(ValidationError):
            modification_service.order_change("DC-100", SN, "E", "", actor=actor)
        assert _serial().status == "N"

    def test_repair_with_description_persists(self, serial, actor):
        modification_service.order_change("DC-100", SN, "E", "Cracked rule", "2026-11-30", actor=actor)
        s = _serial()
        assert s.status == "E"
        assert s.due_date.isoformat() == "2026-11-30"
        mod = _mods()[-1]
        assert mod.prob_desc == "Cracked rule"
        assert mod.modify_type == "E"
        assert mod.order_by == "EMP001"

    def test_blade_change_counter_increments(self, serial, actor):
        modification_service.order_change("DC-100", SN, "B", actor=actor)
        assert _serial().blade_change_count == 1
        modification_service.order_change("DC-100", SN, "B", actor=actor)
        assert _serial().blade_change_count == 2
        assert len([m for m in _mods() if m.cycle_state == "OPEN"]) == 1

    def test_order_on_closed_cycle_opens_new_row(self, serial, actor):
        modification_service.save_modification("DC-100", SN, {"end_time": "2026-01-10"}, actor)
        modification_service.order_change("DC-100", SN, "B", actor=actor)
        states = [m.cycle_state for m in _mods()]
        assert states == ["CLOSED", "OPEN"]

    def test_unknown_sn_is_not_found(self, diecut, actor):
        with pytest.raises(NotFoundError):
            modification_service.order_change("DC-100", "DC-100-0404", "B", actor=actor)

    def test_cancel_order_retires_sn(self, serial, actor):
        modification_service.order_change("DC-100", SN, "B", due_date="2026-12-01", actor=actor)
        mod = modification_service.cancel_order("DC-100", SN, actor)

        assert mod.cycle_state == "CANCELLED"
        assert mod.cancel_flag is True
        assert mod.cancel_by == "EMP001"
        assert mod.order_date is None and mod.due_date is None
        s = _serial()
        assert s.status == "F"
        assert s.due_date is None

    def test_cancel_without_open_cycle_is_not_found(self, serial, actor):
        modification_service.cancel_order("DC-100", SN, actor)
        with pytest.raises(NotFoundError):
            modification_service.cancel_order("DC-100", SN, actor)

    def test_update_order_info(self, serial, actor):
        result = modification_service.update_order_info(
            SN, order_date="2026-10-01", due_date="2026-10-20", job_id="J-5", prod_desc="Tray", actor=actor,
        )
        assert result["modification"]["order_date"] == "2026-10-01"
        assert result["serial"]["due_date"] == "2026-10-20"
        assert result["serial"]["job_id"] == "J-5"

    def test_order_endpoints(self, client, serial):
        res = client.post(f"{BASE}/orders/change", json={"diecutId": "DC-100", "diecutSN": SN, "modifyType": "E"})
        assert res.status_code == 400
        assert res.get_json()["success"] is False

        res = client.post(f"{BASE}/orders/change",
                          json={"diecutId": "DC-100", "diecutSN": SN, "modifyType": "B"})
        assert res.status_code == 200
        assert res.get_json()["data"]["serial"]["blade_change_count"] == 1

        res = client.post(f"{BASE}/orders/info", json={"diecutSn": SN, "dueDate": "2026-12-24"})
        assert res.status_code == 200

        res = client.post(f"{BASE}/orders/cancel", json={"diecutId": "DC-100", "diecutSN": SN})
        assert res.status_code == 200
        assert res.get_json()["data"]["modification"]["cycle_state"] == "CANCELLED"


# ═════════════════════════════════════════════════════════════════════════════
# Type change
# ═════════════════════════════════════════════════════════════════════════════


class TestTypeChange:
    def test_request_leaves_live_type(self, serial, actor):
        mod = modification_service.request_type_change("DC-100", SN, "DC", "BD", "customer artwork", actor)
        assert mod.modify_type_appv_flag == "P"
        assert mod.type_change_state == "PENDING_APPROVAL"
        assert _serial().diecut_type == "DC"

    def test_approve_round_trip(self, serial, actor):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)
        modification_service.approve_type_change("DC-100", SN, "BD", actor)

        s = _serial()
        assert s.diecut_type == "BD"
        assert s.status == "BD"
        mod = _mods()[-1]
        assert mod.modify_type_appv_flag == "A"
        assert mod.appv_by == "EMP001"

    def test_approve_defaults_to_requested_type(self, serial, actor):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)
        modification_service.approve_type_change("DC-100", SN, None, actor)
        assert _serial().diecut_type == "BD"

    def test_cancel_returns_original_type(self, serial, actor):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)
        result = modification_service.cancel_type_change("DC-100", SN, actor)

        assert result == {"original_type": "DC"}
        assert _serial().diecut_type == "DC"
        mod = _mods()[-1]
        assert mod.modify_type_appv_flag is None
        assert mod.modify_type_req_to == "BD"

    def test_approve_without_request_conflicts(self, serial, actor):
        with pytest.raises(InvalidTransitionError):
            modification_service.approve_type_change("DC-100", SN, "BD", actor)

    def test_cancel_after_approve_conflicts(self, serial, actor):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)
        modification_service.approve_type_change("DC-100", SN, "BD", actor)
        with pytest.raises(InvalidTransitionError):
            modification_service.cancel_type_change("DC-100", SN, actor)

    def test_new_request_after_approval(self, serial, actor):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)
        modification_service.approve_type_change("DC-100", SN, "BD", actor)
        mod = modification_service.request_type_change("DC-100", SN, None, "DC", None, actor)
        assert mod.modify_type_req_from == "BD"
        assert mod.appv_by is None

    def test_approve_rolls_back_when_sn_update_fails(self, serial, actor, monkeypatch):
        modification_service.request_type_change("DC-100", SN, "DC", "BD", None, actor)

        def broken_apply(serial, approved_type):
            raise SQLAlchemyError("write failed")

        monkeypatch.setattr(modification_service, "_apply_type", broken_apply)
        with pytest.raises(StorageError):
            modification_service.approve_type_change("DC-100", SN, "BD", actor)

        assert _mods()[-1].modify_type_appv_flag == "P"
        assert _serial().diecut_type == "DC"

    def test_type_change_endpoints(self, client, serial):
        res = client.post(f"{BASE}/type-change/request", json={
            "diecutId": "DC-100", "diecutSN": SN, "modifyTypeBefore": "DC", "modifyType": "BD",
            "changeReason": "new artwork",
        })
        assert res.status_code == 200

        res = client.post(f"{BASE}/type-change/cancel", json={"diecutId": "DC-100", "diecutSN": SN})
        assert res.get_json()["data"]["original_type"] == "DC"

        res = client.post(f"{BASE}/type-change/approve", json={"diecutId": "DC-100", "diecutSN": SN})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
