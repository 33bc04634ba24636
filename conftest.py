"""
Shared pytest fixtures.

Every test gets a throwaway SQLite file under tmp_path and a low bcrypt
work factor so hashing stays fast.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from auth import AuthConfig, AuthContext, AuthService, PasswordManager
from database_manager import DatabaseManager, User, UserRole

PASSWORD = "SecurePass123!"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Lower the bcrypt work factor for the test run."""
    monkeypatch.setattr(PasswordManager, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    manager = DatabaseManager(str(tmp_path / "test_manuals.db"))
    manager.initialize()
    return manager


@pytest.fixture
def auth_config():
    """Create auth config for testing."""
    return AuthConfig(
        access_secret="test-access-secret-for-testing-12345",
        refresh_secret="test-refresh-secret-for-testing-67890",
    )


@pytest.fixture
def notifier():
    """Stand-in for the mailer."""
    mock = MagicMock()
    mock.send_password_reset.return_value = {"success": True}
    return mock


@pytest.fixture
def auth_service(db, auth_config, notifier):
    return AuthService(db, config=auth_config, notifier=notifier)


@pytest.fixture
def world(db):
    """
    Two airlines and a user of every role.

    airline_a (AA): admin_a, editor_a, viewer_a
    airline_b (DL): admin_b, viewer_b
    super_admin: no airline
    """
    password_hash = PasswordManager.hash_password(PASSWORD)
    airline_a = db.create_airline("American Airlines", "AA")
    airline_b = db.create_airline("Delta Air Lines", "DL")

    def user(email, role, airline):
        return db.create_user(
            email, password_hash, role, airline.id if airline else None,
            first_name=email.split("@")[0], last_name="Test"
        )

    return SimpleNamespace(
        airline_a=airline_a,
        airline_b=airline_b,
        super_admin=user("super@admin.com", UserRole.SUPER_ADMIN, None),
        admin_a=user("admin@aa.com", UserRole.ADMIN, airline_a),
        editor_a=user("editor@aa.com", UserRole.EDITOR, airline_a),
        viewer_a=user("viewer@aa.com", UserRole.VIEWER, airline_a),
        admin_b=user("admin@dl.com", UserRole.ADMIN, airline_b),
        viewer_b=user("viewer@dl.com", UserRole.VIEWER, airline_b),
    )


def identity_of(user: User) -> AuthContext:
    """AuthContext for a user row, as the middleware would build it."""
    return AuthContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        airline_id=user.airline_id,
    )


@pytest.fixture
def bearer(auth_service):
    """Log a user in and return an Authorization header value."""
    def _bearer(email: str, password: str = PASSWORD) -> str:
        return f"Bearer {auth_service.login(email, password)['access_token']}"
    return _bearer
