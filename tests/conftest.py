import os
import tempfile

# -------------------------------------------------------
# Environment must be in place before the app is imported
# -------------------------------------------------------
_TMP = tempfile.mkdtemp(prefix="civic-issues-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/app.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GEOCODING_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("SUPABASE_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.main import app
from app.core.security import make_access_token
from app.db.base import Base
from app.db.session import get_db, make_engine
from app.models.user import User, UserRole
from app.services.ai import AIProvider, get_ai_provider
from app.services.geocoding import NullGeocoder, get_geocoder
from app.services.storage import get_storage

NYC = (-73.9851, 40.7589)


class MemoryStorage:
    """Stands in for Supabase/local storage; deletes can be made to fail."""

    def __init__(self):
        self.objects = {}
        self.fail_deletes = False

    def upload_image(self, data, content_type, path):
        self.objects[path] = data
        return f"memory://{path}"

    def delete_image(self, path):
        if self.fail_deletes:
            raise RuntimeError("storage unavailable")
        self.objects.pop(path, None)


# -------------------------------------------------------
# Database
# -------------------------------------------------------
# File-backed SQLite: listings run their count and data queries on separate
# connections from worker threads.
@pytest.fixture(scope="function")
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def storage():
    return MemoryStorage()


@pytest.fixture(scope="function")
def client(session_factory, storage):
    """Test client with DB, AI, geocoder and storage overridden."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_provider] = AIProvider
    app.dependency_overrides[get_geocoder] = NullGeocoder
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


# -------------------------------------------------------
# Users
# -------------------------------------------------------
def _make_user(db, email, name, role=UserRole.user):
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def citizen(db_session):
    return _make_user(db_session, "citizen@example.org", "Casey Citizen")


@pytest.fixture
def neighbor(db_session):
    return _make_user(db_session, "neighbor@example.org", "Noor Neighbor")


@pytest.fixture
def admin(db_session):
    return _make_user(db_session, "admin@example.org", "Ada Admin", UserRole.admin)


@pytest.fixture
def other_admin(db_session):
    return _make_user(db_session, "crew@example.org", "Cam Crew", UserRole.admin)


def auth(user):
    return {"Authorization": f"Bearer {make_access_token(user.email, user.role.value)}"}


def issue_payload(lng=NYC[0], lat=NYC[1], **overrides):
    body = {
        "title": "Deep pothole on 7th Ave",
        "description": "Large pothole in the right lane near the crosswalk",
        "category": "pothole",
        "location": {"type": "Point", "coordinates": [lng, lat]},
        "address": {"street": "7th Ave", "city": "New York"},
    }
    body.update(overrides)
    return body


def create_issue(client, user, **kwargs):
    r = client.post("/issues", json=issue_payload(**kwargs), headers=auth(user))
    assert r.status_code == 201, r.text
    return r.json()
