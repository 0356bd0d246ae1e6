import os
import base64
from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import db


class Ticker:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def test_app(tmp_path):
    """Isolated app: in-memory DB, temporary blob folder, no scheduler."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "BLOB_FOLDER": str(tmp_path / "blobs"),
        "ENCRYPTION_KEY_B64": base64.b64encode(os.urandom(32)).decode(),
        "BLOB_REAPER_ENABLED": False,
        "UPLOAD_CHUNK_SIZE": 1024,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def svc(test_app):
    services = test_app.extensions["securegov"]
    services.documents.clock = Ticker()
    services.sharing.clock = Ticker()
    return services


@pytest.fixture
def client(test_app):
    with test_app.test_client() as client:
        yield client


def make_user(services, email, identity_number=None, password="secret1"):
    return services.database.insert("users", {
        "email": email,
        "identity_number": identity_number,
        "password_hash": generate_password_hash(password),
    })


def upload_pdf(services, owner_id, name="passport.pdf", data=b"%PDF-1.4 passport scan",
               category="travel-document", description="Passport scan, valid till 2031"):
    return services.documents.upload(
        owner_id,
        data,
        {"name": name, "mime_type": "application/pdf"},
        {"category": category, "description": description},
    )
