"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, tables created/dropped per test
- Organization/user/membership factories
- Session cookie minting for authenticated router tests
- HTTPX AsyncClient wired to the app with the db session override
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

from cryptography.fernet import Fernet

# Configure before the app modules read settings
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["INTEGRATION_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["INTEGRATION_TEST_TIMEOUT_SECONDS"] = "2"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from pms_api.core.deps import COOKIE_NAME, get_db
from pms_api.core.env_defaults import EnvDefaults, get_env_defaults
from pms_api.core.security import create_session_token
from pms_api.db.base import Base
from pms_api.db.enums import IntegrationKey, Role
from pms_api.db.models import Membership, Organization, User
from pms_api.db.session import SessionLocal, engine
from pms_api.main import app
from pms_api.schemas.auth import AuthContext, SessionIdentity
from pms_api.services.verification_cache import verification_cache


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


@pytest.fixture(autouse=True)
def reset_verification_cache() -> Generator[None, None, None]:
    verification_cache.clear()
    yield
    verification_cache.clear()


@pytest.fixture
def make_org(db: Session) -> Callable[..., Organization]:
    def _make(name: str = "Test Organization") -> Organization:
        org = Organization(
            id=uuid.uuid4(),
            name=name,
            slug=f"org-{uuid.uuid4().hex[:8]}",
        )
        db.add(org)
        db.commit()
        return org

    return _make


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(legacy_role: str | None = None) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"user-{uuid.uuid4().hex[:8]}@example.com",
            display_name="Test User",
            legacy_role=legacy_role,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def add_member(db: Session) -> Callable[..., Membership]:
    def _add(user: User, org: Organization, role: Role | str) -> Membership:
        membership = Membership(
            id=uuid.uuid4(),
            user_id=user.id,
            organization_id=org.id,
            role=role.value if isinstance(role, Role) else role,
        )
        db.add(membership)
        db.commit()
        return membership

    return _add


@pytest.fixture
def org(make_org) -> Organization:
    return make_org("Acme Property Management")


@pytest.fixture
def make_member(make_user, add_member, org) -> Callable[..., User]:
    """User with a membership in ``org`` (or the given organization)."""

    def _make(role: Role, organization: Organization | None = None) -> User:
        user = make_user()
        add_member(user, organization or org, role)
        return user

    return _make


@pytest.fixture
def owner(make_member) -> User:
    return make_member(Role.OWNER)


@pytest.fixture
def admin(make_member) -> User:
    return make_member(Role.ADMIN)


def _identity_for(user: User, org_hint: uuid.UUID | None = None) -> SessionIdentity:
    return SessionIdentity(user_id=user.id, email=user.email, org_hint=org_hint)


def _auth_for(user: User, org: Organization, role: Role) -> AuthContext:
    return AuthContext(user_id=user.id, email=user.email, organization_id=org.id, role=role)


@pytest.fixture
def identity_for() -> Callable[..., SessionIdentity]:
    return _identity_for


@pytest.fixture
def auth_for() -> Callable[..., AuthContext]:
    return _auth_for


@pytest.fixture
def admin_auth(admin: User, org: Organization) -> AuthContext:
    return _auth_for(admin, org, Role.ADMIN)


@pytest.fixture
def env_defaults() -> EnvDefaults:
    """Deployment defaults used instead of the real environment."""
    return EnvDefaults.from_mapping(
        {
            IntegrationKey.SMTP: {
                "host": "smtp.env-relay.example.com",
                "port": "587",
                "secure": "false",
                "user": "env-user",
                "password": "env-smtp-password-123",
                "from_address": "noreply@example.com",
                "app_name": "PMS Platform",
            },
            IntegrationKey.STRIPE: {"publishable_key": "pk_test_env"},
        }
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@dataclass
class SessionCookie:
    """Signed session cookie for a user."""
    user: User
    token: str
    cookie_name: str = COOKIE_NAME


def session_cookie(user: User) -> SessionCookie:
    return SessionCookie(user=user, token=create_session_token(user.id, user.email))


@pytest.fixture(scope="function")
async def client(db: Session, env_defaults: EnvDefaults) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient with the CSRF header and no session cookie.

    Tests log in with the ``login`` fixture.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_env_defaults] = lambda: env_defaults

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def login() -> Callable[[AsyncClient, User], None]:
    """Attach a signed session cookie for ``user`` to the client."""

    def _login(client: AsyncClient, user: User) -> None:
        cookie = session_cookie(user)
        client.cookies.set(cookie.cookie_name, cookie.token)

    return _login
