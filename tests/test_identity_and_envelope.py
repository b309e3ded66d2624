"""
Tests: identity context middleware, response envelope and ancillary endpoints.
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest
from sqlalchemy.exc import OperationalError

from toolroom.core.exceptions import DeadlineExceededError, StorageError, ValidationError
from toolroom.models import db as _db
from toolroom.models.diecut import DiecutSerial
from toolroom.models.sql_template import SqlTemplate
from toolroom.services import sql_template_service
from toolroom.utils.helpers import storage_guard

BASE = "/api/v1/diecuts"


def _token(app, **claims):
    claims.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=5))
    return pyjwt.encode(claims, app.config["SECRET_KEY"], algorithm="HS256")


@pytest.fixture()
def identity_required(app, monkeypatch):
    monkeypatch.setitem(app.config, "IDENTITY_REQUIRED", True)


# ═════════════════════════════════════════════════════════════════════════════
# Identity
# ═════════════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_jwt_claims_become_actor(self, app, client, diecut):
        token = _token(app, ORG_ID="ORG9", EMP_ID="E42")
        res = client.post(f"{BASE}/DC-100/serial", json={}, headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 201
        serial = _db.session.get(DiecutSerial, "DC-100-0001")
        assert (serial.cr_org_id, serial.cr_user_id) == ("ORG9", "E42")

    def test_standard_claims_accepted(self, app, client, diecut):
        token = _token(app, org_id="ORG2", sub="U7")
        client.post(f"{BASE}/DC-100/serial", json={}, headers={"Authorization": f"Bearer {token}"})
        assert _db.session.get(DiecutSerial, "DC-100-0001").cr_user_id == "U7"

    def test_gateway_headers(self, client, diecut):
        client.post(f"{BASE}/DC-100/serial", json={}, headers={"X-Org-Id": "ORG3", "X-User-Id": "H1"})
        assert _db.session.get(DiecutSerial, "DC-100-0001").cr_org_id == "ORG3"

    def test_mutation_without_identity_rejected_when_required(self, client, diecut, identity_required):
        res = client.post(f"{BASE}/DC-100/serial", json={})
        assert res.status_code == 401
        assert res.get_json() == {
            "success": False, "message": "Authentication required", "code": "ERR_UNAUTHENTICATED",
        }

    def test_bad_signature_is_anonymous(self, client, diecut, identity_required):
        token = pyjwt.encode({"EMP_ID": "E1"}, "a-completely-different-secret-0123456789", algorithm="HS256")
        res = client.post(f"{BASE}/DC-100/serial", json={}, headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401

    def test_reads_allowed_without_identity(self, client, diecut, identity_required):
        assert client.get(f"{BASE}/DC-100").status_code == 200

    def test_health_skips_identity(self, client, identity_required):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# Envelope & storage errors
# ═════════════════════════════════════════════════════════════════════════════


class TestEnvelope:
    def test_success_envelope_and_request_headers(self, client, diecut):
        res = client.get(f"{BASE}/DC-100", headers={"X-Request-ID": "req-123"})
        body = res.get_json()
        assert set(body) == {"success", "message", "data"}
        assert res.headers["X-Request-ID"] == "req-123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_not_found_envelope(self, client):
        res = client.get(f"{BASE}/NOPE")
        assert res.status_code == 404
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "ERR_NOT_FOUND"
        assert "data" not in body

    def test_unknown_route_envelope(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["success"] is False

    def test_storage_guard_maps_operational_errors(self):
        with pytest.raises(DeadlineExceededError):
            with storage_guard("lookup", diecut_sn="X"):
                raise OperationalError("SELECT 1", {}, Exception("canceling statement due to statement timeout"))

        with pytest.raises(StorageError) as info:
            with storage_guard("lookup"):
                raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        assert not isinstance(info.value, DeadlineExceededError)

        with pytest.raises(StorageError) as info:
            with storage_guard("lookup"):
                raise OperationalError("UPDATE diecut_serials", {}, Exception("database is locked"))
        assert not isinstance(info.value, DeadlineExceededError)

    def test_storage_error_message_is_generic(self, client, diecut, monkeypatch):
        from toolroom.services import catalog_service

        def broken(*args, **kwargs):
            raise StorageError("list_diecuts", "ORA-00942: table or view does not exist")

        monkeypatch.setattr(catalog_service, "list_active", broken)
        res = client.get(BASE)
        assert res.status_code == 500
        assert res.get_json()["message"] == "Database error"


# ═════════════════════════════════════════════════════════════════════════════
# SQL templates / open jobs
# ═════════════════════════════════════════════════════════════════════════════


class TestSqlTemplates:
    def test_bind_names_ignore_casts(self):
        assert sql_template_service.bind_names("SELECT :a::text, x FROM t WHERE y = :b_2") == {"a", "b_2"}

    def test_open_jobs_runs_template_with_binds(self, app, client, diecut, actor):
        _db.session.add(SqlTemplate(
            sql_no=app.config["SQL_TEMPLATE_IDS"]["open_jobs"],
            sql_stmt="SELECT diecut_id, diecut_name FROM diecuts WHERE diecut_id = :diecut_id",
            description="open jobs (test)",
        ))
        _db.session.commit()

        res = client.post(f"{BASE}/openjobs", json={"diecutId": "DC-100", "DIECUT_TYPE": "DC"})
        assert res.status_code == 200
        assert res.get_json()["data"]["jobs"] == [{"diecut_id": "DC-100", "diecut_name": "Carton lid die"}]

    def test_unknown_template_is_not_found(self, client):
        res = client.post(f"{BASE}/openjobs", json={"diecutId": "DC-100"})
        assert res.status_code == 404

    def test_missing_bind_is_validation_error(self, app):
        _db.session.add(SqlTemplate(sql_no=7, sql_stmt="SELECT :needed AS v"))
        _db.session.commit()
        with pytest.raises(ValidationError) as info:
            sql_template_service.execute_template(7)
        assert "needed" in str(info.value)
