"""
Pytest configuration and shared fixtures.

Every test gets its own database file and local cache under tmp_path.
"""
import pytest

from scalelog.collection import ScaleCollection
from scalelog.database import PracticeDatabase
from scalelog.ledger import DailyPracticeLedger
from scalelog.local_cache import LocalCache
from scalelog.sessions import SessionStore
from scalelog.web_server import ScaleLogWebServer


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "data" / "scales.db")


@pytest.fixture
def db(db_path):
    database = PracticeDatabase(db_path)
    yield database
    database.close()


@pytest.fixture
def sessions(db) -> SessionStore:
    return SessionStore(db)


@pytest.fixture
def ledger(db) -> DailyPracticeLedger:
    return DailyPracticeLedger(db)


@pytest.fixture
def collection(db) -> ScaleCollection:
    return ScaleCollection(db)


@pytest.fixture
def cache(tmp_path) -> LocalCache:
    return LocalCache(str(tmp_path / "cache" / "local_cache.json"))


@pytest.fixture(params=["database", "local_cache"])
def any_sessions(request, sessions, cache):
    """The session store and its local-cache mirror, for rules both must follow."""
    return sessions if request.param == "database" else cache.sessions


@pytest.fixture(params=["database", "local_cache"])
def any_collection(request, collection, cache):
    return collection if request.param == "database" else cache.collection


@pytest.fixture
def server(db) -> ScaleLogWebServer:
    return ScaleLogWebServer(db)


@pytest.fixture
def api(server):
    """Flask test client for the web server."""
    return server.app.test_client()
