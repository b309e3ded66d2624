"""
Fixtures for the toolroom suite.

The app is built once with the ``testing`` config (in-memory SQLite,
identity optional, no rate limits). Each test runs inside an app context and
gets an empty schema afterwards, so tests may commit freely.
"""

import pytest

from toolroom import create_app
from toolroom.core.identity import Actor
from toolroom.models import db as _db
from toolroom.services import catalog_service


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    application = create_app("testing")
    application.config["DIECUT_IMAGE_DIR"] = str(tmp_path_factory.mktemp("diecut-images"))
    return application


@pytest.fixture(scope="session")
def _schema(app):
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _schema):
    """App context per test; tables are rebuilt after each one."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def actor():
    return Actor(org_id="ORG1", user_id="EMP001")


@pytest.fixture()
def diecut(actor):
    """ACTIVE diecut DC-100 of type DC with a 420x297 blank."""
    return catalog_service.create(
        "DC-100",
        {"diecut_name": "Carton lid die", "diecut_type": "DC", "blank_size_x": 420, "blank_size_y": 297},
        actor.user_id,
    )
