# tests/conftest.py

import os
from datetime import timedelta

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import jwt
import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from config import settings
from database import Base, enable_sqlite_foreign_keys
from deps import get_db
from main import app
from Login_module.Utils.datetime_utils import now_utc
from Login_module.Utils.kv_store import InMemoryKeyValueStore, get_store
from Tracking_module.attachment_storage import AttachmentStorage, get_attachment_storage
from Tracking_module.event_recorder import EventRecorder
from Tracking_module.Tracking_router import get_event_recorder
from Tracking_module.Tracking_schema import LocationInfo

OWNER_ID = "user-1"
OTHER_OWNER_ID = "user-2"

BERLIN = LocationInfo(
    city="Berlin",
    region="Berlin",
    country="Germany",
    country_code="DE",
    isp="Deutsche Telekom AG",
    timezone="Europe/Berlin",
    lat=52.52,
    lon=13.405,
)


# --- Database ---

@pytest.fixture(scope="function")
def db_session():
    """Fresh in-memory SQLite database per test, foreign keys on so cascades apply."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


# --- Fakes ---

class FakeGeoResolver:
    """Records every lookup and answers with a fixed location."""

    def __init__(self, location: LocationInfo = BERLIN):
        self.location = location
        self.calls = []

    def resolve(self, ip):
        self.calls.append(ip)
        return self.location


class FakeBody:
    def __init__(self, content: bytes):
        self._content = content

    def iter_chunks(self, chunk_size=1024):
        for i in range(0, len(self._content), chunk_size):
            yield self._content[i:i + chunk_size]


class FakeS3Client:
    """Just enough of the boto3 S3 client for AttachmentStorage."""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.objects[(Bucket, Key)] = (Body, kwargs.get("ContentType"))

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        body, content_type = self.objects[(Bucket, Key)]
        return {"Body": FakeBody(body), "ContentType": content_type}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


@pytest.fixture
def geo_resolver():
    return FakeGeoResolver()


@pytest.fixture
def recorder(geo_resolver):
    return EventRecorder(geo_resolver)


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return AttachmentStorage(client=s3_client, bucket="test-bucket", prefix="attachments")


# --- Test Client ---

@pytest.fixture(scope="function")
def client(db_session, recorder, store, storage):
    """
    TestClient with the database, recorder, store and storage replaced.
    Not used as a context manager, so the lifespan (table creation, scheduler) does not run.
    """
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_event_recorder] = lambda: recorder
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_attachment_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_access_token(claims: dict, expires_in: int = None) -> str:
    """Sign a token the way the auth service does."""
    payload = dict(claims)
    payload["exp"] = now_utc() + timedelta(seconds=expires_in or settings.ACCESS_TOKEN_EXPIRE_SECONDS)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id: str = OWNER_ID) -> dict:
    token = create_access_token({"sub": user_id, "email": f"{user_id}@example.com"})
    return {"Authorization": f"Bearer {token}"}
