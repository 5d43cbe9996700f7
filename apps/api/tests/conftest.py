"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema created per test
- JWT token minting for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment comes first
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["SUBSCRIPTION_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SENTRY_DSN"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from aris.core.deps import COOKIE_NAME, get_db
from aris.core.security import create_session_token
from aris.db.base import Base
from aris.db.enums import EmailProvider, Role
from aris.db.models import EmailAccount, Membership, Organization, User
from aris.db.session import SessionLocal, engine
from aris.main import app
from aris.services import email_account_service
from aris.services.ai_provider import AIProvider, ChatResponse
from aris.services.mail_clients import MailClient, NormalizedMessage


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code may commit freely."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_org(db: Session, name: str = "Test Organization") -> Organization:
    org = Organization(
        id=uuid.uuid4(),
        name=name,
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
    )
    db.add(org)
    db.commit()
    return org


def make_user(
    db: Session,
    org: Organization,
    role: Role = Role.OWNER,
    is_platform_admin: bool = False,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"test-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Test User",
        is_platform_admin=is_platform_admin,
    )
    db.add(user)
    db.flush()
    db.add(Membership(id=uuid.uuid4(), user_id=user.id, organization_id=org.id, role=role.value))
    db.commit()
    return user


def token_for(user: User, org: Organization, role: Role = Role.OWNER) -> str:
    return create_session_token(
        user_id=user.id,
        org_id=org.id,
        role=role.value,
        token_version=user.token_version,
    )


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    return make_org(db)


@pytest.fixture(scope="function")
def test_user(db: Session, test_org: Organization) -> User:
    """Create a test user who owns test_org."""
    return make_user(db, test_org, Role.OWNER)


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    org: Organization
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(test_user: User, test_org: Organization) -> TestAuth:
    """Create JWT token for test user."""
    return TestAuth(user=test_user, org=test_org, token=token_for(test_user, test_org))


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth,
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated AsyncClient with JWT cookie and CSRF header."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def member_client(
    db: Session,
    test_org: Organization,
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated client for a plain member of test_org."""
    member = make_user(db, test_org, Role.MEMBER)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={
            "Authorization": f"Bearer {token_for(member, test_org, Role.MEMBER)}",
        },
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Provider fakes
# =============================================================================

class FakeMailClient(MailClient):
    """In-memory mailbox keyed by folder."""
    provider = "fake"

    def __init__(self, folders: dict[str, list[NormalizedMessage]] | None = None, error: Exception | None = None):
        self.folders = folders or {}
        self.error = error
        self.limits: dict[str, int] = {}
        self.sent: list[tuple[list[str], str, str]] = []

    async def fetch_messages(self, folder, limit):
        if self.error:
            raise self.error
        self.limits[folder] = limit
        return self.folders.get(folder, [])[:limit]

    async def fetch_message(self, message_id, folder):
        for message in self.folders.get(folder, []):
            if message.message_id == message_id:
                return message
        return None

    async def test_connection(self):
        return "sales@acme.com"

    async def send(self, to, subject, body):
        if self.error:
            raise self.error
        self.sent.append((to, subject, body))
        return "sent-1"


class FakeProvider(AIProvider):
    """AI provider that always answers with the same content."""
    name = "fake"

    def __init__(self, content: str):
        self.content = content
        self.calls: list[list] = []

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000):
        self.calls.append(messages)
        return ChatResponse(
            content=self.content, prompt_tokens=10, completion_tokens=5, total_tokens=15, model="gpt-4o-mini"
        )

    async def validate_key(self):
        return True


@pytest.fixture
def fake_client(monkeypatch) -> FakeMailClient:
    """Every mailbox resolves to one shared FakeMailClient."""
    client = FakeMailClient()

    async def build(db, account):
        return client

    monkeypatch.setattr(email_account_service, "build_mail_client", build)
    return client


@pytest.fixture
def email_account(db: Session, test_auth: TestAuth) -> EmailAccount:
    """An IMAP mailbox owned by the test user."""
    account = EmailAccount(
        organization_id=test_auth.org.id,
        user_id=test_auth.user.id,
        email="sales@acme.com",
        provider_type=EmailProvider.IMAP.value,
        imap_host="imap.acme.com",
        setup_completed=True,
    )
    db.add(account)
    db.commit()
    return account
