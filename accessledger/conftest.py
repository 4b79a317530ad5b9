# accessledger/conftest.py
import pytest

from accessledger.core import database
from accessledger.core.config import settings
from accessledger.core.metrics import METRICS

ADMIN_KEY = "test-admin-key-123"


@pytest.fixture(scope="function")
def ledger_db(tmp_path, monkeypatch):
    """
    Fresh file-backed SQLite ledger for each test.

    File-backed (not :memory:) so concurrent tests exercise real connection
    pooling and SQLite write locking.
    """
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    monkeypatch.setenv("TEST_DATABASE_URL", url)
    database.dispose_engine()
    database.init_engine(url)
    database.create_all_tables()
    yield url
    database.dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    """Counters are process-global; start every test from zero."""
    METRICS.reset()
    yield


@pytest.fixture(scope="function")
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_RETRY_BACKOFF_MS", 0)
    return settings


@pytest.fixture(scope="function")
def client(ledger_db, monkeypatch):
    """TestClient bound to the per-test ledger, with a known admin key."""
    from fastapi.testclient import TestClient
    from accessledger.main import app

    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-User-Id": "ops-admin", "X-Admin-Key": ADMIN_KEY}
