import os
import tempfile

# api.py builds a module-level app on import; point it at a throwaway database
# and cheap bcrypt rounds before any project module reads the environment.
os.environ.setdefault("LIBRARY_DB_FILE", os.path.join(tempfile.mkdtemp(prefix="library_tests_"), "library.db"))
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api import create_app
from config import Settings
from database import initialize_database
from library import Library
from services.google_oauth_service import GoogleOAuthClient, GoogleProfile
from users import SQLiteUserStore


class FakeCatalog:
    """Stands in for OpenLibraryService; records every query."""

    def __init__(self, docs=None, error=None):
        self.docs = docs or []
        self.error = error
        self.queries = []

    async def search(self, query, limit=None):
        self.queries.append(query)
        if self.error:
            raise self.error
        return {"start": 0, "num_found": len(self.docs), "docs": self.docs}


class FakeGoogleOAuthClient(GoogleOAuthClient):
    """Real authorization URL and state handling, canned profile exchange."""

    def __init__(self, settings, profile=None, error=None):
        super().__init__(settings)
        self.profile = profile or GoogleProfile(
            id="1234567890", email="reader@gmail.com", name="Google Reader",
            avatar_url="https://example.com/avatar.png",
        )
        self.error = error
        self.codes = []

    async def fetch_profile(self, code):
        self.codes.append(code)
        if self.error:
            raise self.error
        return self.profile


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    path = str(tmp_path / f"test_{request.node.name[:40].replace('/', '_')}.db")
    initialize_database(path)
    return path


@pytest.fixture
def lib(db_file):
    return Library(db_file=db_file)


@pytest.fixture
def user_store(db_file):
    return SQLiteUserStore(db_file)


@pytest.fixture
def test_settings(db_file):
    s = Settings.from_env()
    s.database_file = db_file
    s.client_url = "http://frontend.test"
    s.backend_base_url = "http://testserver"
    s.password_hash_rounds = 4
    s.google_client_id = "test-google-client-id"
    s.google_client_secret = "test-google-client-secret"
    return s


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def google_client(test_settings):
    return FakeGoogleOAuthClient(test_settings)


@pytest.fixture
def app(test_settings, catalog, google_client):
    return create_app(test_settings, catalog=catalog, google=google_client)


@pytest.fixture
def make_client(app):
    """Factory for independent clients (separate cookie jars) against the same app."""
    def _make():
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def register_user():
    """Register through the API; the client keeps the session cookie."""
    counter = {"n": 0}

    def _register(client, email=None, password="password123", name="Test User"):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        response = client.post("/auth/local/register", json={"email": email, "password": password, "name": name})
        assert response.status_code == 201, response.text
        return response.json()["user"]

    return _register
