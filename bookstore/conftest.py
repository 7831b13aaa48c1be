import os
import re

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SKIP_DB_INIT"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bookstore import models
from bookstore.auth import create_access_token, hash_password
from bookstore.database import Base, get_db
from bookstore.mailer import MailDeliveryError, Mailer
from bookstore.main import app
from bookstore.notifications import NotificationDispatcher
from bookstore.storage import StoredFile

VERIFY_LINK = re.compile(r"/verify-email/([0-9a-f]{64})")
RESET_LINK = re.compile(r"/reset-password/([0-9a-f]{64})")

PASSWORD = "Secret123"


class RecordingMailer(Mailer):
    def __init__(self, fail: bool = False):
        super().__init__(api_key="test", sender="books@example.com", frontend_url="http://frontend.test")
        self.fail = fail
        self.sent = []

    async def send(self, to_email, subject, body):
        if self.fail:
            raise MailDeliveryError("Failed to send email.")
        self.sent.append({"to": to_email, "subject": subject, "body": body})

    def last_token(self, pattern, to_email=None):
        for message in reversed(self.sent):
            if to_email and message["to"] != to_email:
                continue
            match = pattern.search(message["body"])
            if match:
                return match.group(1)
        return None


class FakeStorage:
    configured = True

    def __init__(self):
        self.stored = []
        self.deleted = []

    async def store(self, content, filename, content_type=None):
        storage_id = f"books/cover-{len(self.stored) + 1}.png"
        self.stored.append((storage_id, content))
        return StoredFile(url=f"https://cdn.test/{storage_id}", storage_id=storage_id)

    async def delete(self, storage_id):
        self.deleted.append(storage_id)


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def mailer():
    return RecordingMailer()


@pytest.fixture(scope="function")
def storage():
    return FakeStorage()


@pytest.fixture(scope="function")
def notifier():
    return NotificationDispatcher()


@pytest.fixture(scope="function")
def client(db_session, session_factory, mailer, storage, notifier):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.mailer = mailer
    app.state.storage = storage
    app.state.notifier = notifier
    app.state.session_factory = session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email="reader@example.com", name="Reader", role="user", password=PASSWORD, **fields):
    user = models.User(name=name, email=email, password=hash_password(password), role=role, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture(scope="function")
def admin(db_session):
    return make_user(db_session, email="admin@example.com", name="Admin", role="admin")


@pytest.fixture(scope="function")
def reader(db_session):
    return make_user(db_session)


@pytest.fixture(scope="function")
def admin_headers(admin):
    return auth_header(admin)


@pytest.fixture(scope="function")
def reader_headers(reader):
    return auth_header(reader)


def make_book(db, added_by, **fields):
    values = {
        "title": "The Pragmatic Programmer",
        "author": "Andrew Hunt",
        "description": "From journeyman to master",
        "genre": "Technology",
        "price": 30.0,
        "stock": 5,
    }
    values.update(fields)
    book = models.Book(added_by_id=added_by.id, **values)
    db.add(book)
    db.commit()
    db.refresh(book)
    return book
