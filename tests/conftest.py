"""
Shared fixtures for the Clubcast test suite.

Every test gets its own temporary DB_DIR, a fully initialised Flask app
and a fake delivery collaborator so nothing ever reaches a real email
provider. Install test dependencies with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile
import threading

import pytest
from flask import Flask

from clubcast import Clubcast
from clubcast.modules.mailing.delivery import DeliveryReceipt
from clubcast.modules.mailing.errors import DeliveryFailed


class FakeDelivery:
    """Stands in for EmailDelivery; records every call it receives"""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self._lock = threading.Lock()

    def send(self, recipients, subject, body, source=''):
        with self._lock:
            self.calls.append({
                'person_ids': list(recipients.person_ids),
                'subject': subject,
                'body': body,
                'source': source,
            })
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            raise DeliveryFailed(self.fail_with)
        return DeliveryReceipt(accepted=recipients.total, failed=0, provider='fake')


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for test databases, cleaned up after."""
    d = tempfile.mkdtemp(prefix="clubcast-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def app(tmp_db_dir, delivery):
    """Fully initialised Flask app with the mailing module registered."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = tmp_db_dir
    app.config["MAILING_DB"] = os.path.join(tmp_db_dir, "mailing.db")
    app.config["ANALYTICS_DB"] = os.path.join(tmp_db_dir, "analytics.db")
    app.config["QUOTA_TIMEZONE"] = "Europe/Paris"
    app.config["EMAIL_SEND_INTERVAL"] = 0
    Clubcast(app, {'delivery': delivery})
    return app


@pytest.fixture
def ctx(app):
    """Run the test body inside an application context."""
    with app.app_context():
        yield app


@pytest.fixture
def db_path(app):
    return app.config["MAILING_DB"]


@pytest.fixture
def client(app):
    return app.test_client()
