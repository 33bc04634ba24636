"""
Comprehensive tests for the auth.py module.

Tests cover:
- PasswordManager: hashing, verification, strength validation
- JWTManager: access/refresh token creation and verification
- AuthMiddleware: bearer header parsing and identity resolution
- Authorization policy: role hierarchy and tenant guards
- AuthService: login, refresh, logout, password reset, authorize/protect
"""

import logging
import re
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from auth import (
    ADMIN_OR_ABOVE,
    ANY_ROLE,
    EDITOR_OR_ABOVE,
    SUPER_ADMIN_ONLY,
    AuthConfig,
    AuthContext,
    AuthMiddleware,
    AuthService,
    JWTManager,
    PasswordManager,
    effective_airline_id,
    enforce_tenant,
    ensure_tenant_access,
    hash_reset_token,
    require_role,
    roles_at_or_above,
)
from conftest import PASSWORD, identity_of
from database_manager import UserRole
from errors import (
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidRefreshToken,
    Unauthenticated,
    ValidationError,
)


def _past(**delta) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


# =============================================================================
# PASSWORD MANAGER TESTS
# =============================================================================

class TestPasswordManager:
    """Tests for PasswordManager class."""

    def test_hash_password_success(self):
        """Test successful password hashing."""
        hashed = PasswordManager.hash_password(PASSWORD)

        assert hashed != PASSWORD
        assert hashed.startswith("$2")  # bcrypt hash prefix

    def test_hash_uses_fresh_salt(self):
        """Same input, different hashes."""
        assert PasswordManager.hash_password(PASSWORD) != PasswordManager.hash_password(PASSWORD)

    def test_hash_empty_string(self):
        """Hashing never fails, even for an empty string."""
        hashed = PasswordManager.hash_password("")
        assert PasswordManager.verify_password("", hashed) is True

    def test_hash_long_password(self):
        """Passwords past bcrypt's 72-byte limit still hash and verify."""
        long_password = "Aa1!" * 40
        hashed = PasswordManager.hash_password(long_password)
        assert PasswordManager.verify_password(long_password, hashed) is True

    def test_verify_password_correct(self):
        hashed = PasswordManager.hash_password(PASSWORD)
        assert PasswordManager.verify_password(PASSWORD, hashed) is True

    def test_verify_password_incorrect(self):
        hashed = PasswordManager.hash_password(PASSWORD)
        assert PasswordManager.verify_password("WrongPassword1!", hashed) is False

    @pytest.mark.parametrize("bad_hash", ["", None, "not-a-bcrypt-hash", "$2b$04$short"])
    def test_verify_malformed_hash_returns_false(self, bad_hash):
        """Malformed hashes never raise."""
        assert PasswordManager.verify_password(PASSWORD, bad_hash) is False

    def test_validate_password_strength_valid(self):
        is_valid, issues = PasswordManager.validate_password_strength("SecurePass123!")

        assert is_valid is True
        assert issues == []

    @pytest.mark.parametrize("password", [
        "longpassword",
        "12345678",
        "ALLCAPSNODIGITS",
        "a" * 128,
    ])
    def test_length_is_the_only_requirement(self, password):
        """No character class rules."""
        assert PasswordManager.validate_password_strength(password) == (True, [])

    @pytest.mark.parametrize("password,fragment", [
        ("Abc1!", "at least 8 characters"),
        ("1234567", "at least 8 characters"),
        ("", "at least 8 characters"),
        ("a" * 129, "less than 128"),
    ])
    def test_validate_password_strength_issues(self, password, fragment):
        is_valid, issues = PasswordManager.validate_password_strength(password)

        assert is_valid is False
        assert any(fragment in issue for issue in issues)

    def test_non_string_password(self):
        assert PasswordManager.validate_password_strength(None) == (False, ["Password is required"])

    def test_require_strong_password_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            PasswordManager.require_strong_password("weak")
        assert exc_info.value.details["issues"]


# =============================================================================
# CONFIG TESTS
# =============================================================================

class TestAuthConfig:
    """Tests for AuthConfig defaults and validation."""

    def test_defaults(self, auth_config):
        assert auth_config.algorithm == "HS256"
        assert auth_config.access_token_expire_minutes == 15
        assert auth_config.refresh_token_expire_days == 30
        assert auth_config.password_reset_expire_minutes == 60

    def test_same_secret_rejected(self):
        with pytest.raises(ValueError):
            AuthConfig(access_secret="same-secret", refresh_secret="same-secret")

    def test_env_secrets(self, monkeypatch):
        monkeypatch.setenv("JWT_ACCESS_SECRET", "from-env-access")
        monkeypatch.setenv("JWT_REFRESH_SECRET", "from-env-refresh")

        config = AuthConfig()

        assert config.access_secret == "from-env-access"
        assert config.refresh_secret == "from-env-refresh"

    def test_random_secrets_differ(self, monkeypatch):
        monkeypatch.delenv("JWT_ACCESS_SECRET", raising=False)
        monkeypatch.delenv("JWT_REFRESH_SECRET", raising=False)

        config = AuthConfig()

        assert config.access_secret != config.refresh_secret


# =============================================================================
# JWT MANAGER TESTS
# =============================================================================

class TestJWTManager:
    """Tests for JWTManager class."""

    @pytest.fixture
    def jwt_manager(self, auth_config):
        return JWTManager(auth_config)

    def test_access_token_round_trip(self, jwt_manager, world):
        token = jwt_manager.create_access_token(world.editor_a)
        payload = jwt_manager.verify_access_token(token)

        assert payload["sub"] == world.editor_a.id
        assert payload["email"] == "editor@aa.com"
        assert payload["role"] == "EDITOR"
        assert payload["airline_id"] == world.airline_a.id
        assert payload["type"] == "access"
        assert payload["iss"] == "airline-manual-admin"
        assert payload["aud"] == "airline-manual-api"
        assert payload["jti"]

    def test_access_token_expiry_is_15_minutes(self, jwt_manager, world):
        payload = jwt_manager.verify_access_token(jwt_manager.create_access_token(world.viewer_a))
        assert payload["exp"] - payload["iat"] == 15 * 60

    def test_super_admin_token_has_null_airline(self, jwt_manager, world):
        payload = jwt_manager.verify_access_token(jwt_manager.create_access_token(world.super_admin))
        assert payload["airline_id"] is None

    def test_refresh_token_round_trip(self, jwt_manager, world):
        token, expires_at = jwt_manager.create_refresh_token(world.admin_a)
        payload = jwt_manager.verify_refresh_token(token)

        assert payload["sub"] == world.admin_a.id
        assert payload["type"] == "refresh"
        assert expires_at - datetime.now(timezone.utc) > timedelta(days=29)

    def test_refresh_tokens_are_unique(self, jwt_manager, world):
        first, _ = jwt_manager.create_refresh_token(world.admin_a)
        second, _ = jwt_manager.create_refresh_token(world.admin_a)
        assert first != second

    def test_refresh_token_rejected_as_access(self, jwt_manager, world):
        token, _ = jwt_manager.create_refresh_token(world.admin_a)
        assert jwt_manager.verify_access_token(token) is None

    def test_access_token_rejected_as_refresh(self, jwt_manager, world):
        token = jwt_manager.create_access_token(world.admin_a)
        assert jwt_manager.verify_refresh_token(token) is None

    def test_expired_access_token(self, jwt_manager, auth_config, world):
        now = datetime.now(timezone.utc)
        token = jwt.encode({
            "sub": world.admin_a.id,
            "iat": now - timedelta(minutes=30),
            "exp": now - timedelta(minutes=15),
            "iss": auth_config.issuer,
            "aud": auth_config.audience,
            "type": "access",
        }, auth_config.access_secret, algorithm="HS256")

        assert jwt_manager.verify_access_token(token) is None

    def test_tampered_access_token(self, jwt_manager, world):
        token = jwt_manager.create_access_token(world.viewer_a)
        header, payload, signature = token.split(".")
        tampered_signature = ("A" if signature[0] != "A" else "B") + signature[1:]

        assert jwt_manager.verify_access_token(f"{header}.{payload}.{tampered_signature}") is None

    def test_wrong_secret(self, auth_config, world):
        other = JWTManager(AuthConfig(access_secret="another-access", refresh_secret="another-refresh"))
        token = other.create_access_token(world.viewer_a)

        assert JWTManager(auth_config).verify_access_token(token) is None

    def test_wrong_audience(self, jwt_manager, auth_config, world):
        now = datetime.now(timezone.utc)
        token = jwt.encode({
            "sub": world.admin_a.id,
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": auth_config.issuer,
            "aud": "some-other-api",
            "type": "access",
        }, auth_config.access_secret, algorithm="HS256")

        assert jwt_manager.verify_access_token(token) is None

    @pytest.mark.parametrize("garbage", [None, "", 42, "invalid.token.here", b"bytes"])
    def test_garbage_input_returns_none(self, jwt_manager, garbage):
        assert jwt_manager.verify_access_token(garbage) is None
        assert jwt_manager.verify_refresh_token(garbage) is None


# =============================================================================
# AUTH MIDDLEWARE TESTS
# =============================================================================

class TestAuthMiddleware:
    """Tests for AuthMiddleware class."""

    @pytest.fixture
    def middleware(self, db, auth_config):
        return AuthMiddleware(JWTManager(auth_config), db)

    @pytest.fixture
    def token_for(self, auth_config):
        manager = JWTManager(auth_config)
        return manager.create_access_token

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Basic abc", "Token abc", "Bearer a b"])
    def test_missing_or_malformed_header(self, middleware, header):
        with pytest.raises(Unauthenticated, match="No token provided"):
            middleware.authenticate_request(header)

    def test_invalid_token(self, middleware):
        with pytest.raises(Unauthenticated, match="Invalid or expired token"):
            middleware.authenticate_request("Bearer not.a.token")

    def test_valid_token(self, middleware, token_for, world):
        identity = middleware.authenticate_request(f"Bearer {token_for(world.editor_a)}")

        assert isinstance(identity, AuthContext)
        assert identity.user_id == world.editor_a.id
        assert identity.role == UserRole.EDITOR
        assert identity.airline_id == world.airline_a.id
        assert identity.airline["code"] == "AA"

    def test_scheme_is_case_insensitive(self, middleware, token_for, world):
        identity = middleware.authenticate_request(f"bearer {token_for(world.viewer_a)}")
        assert identity.user_id == world.viewer_a.id

    def test_identity_carries_no_credentials(self, middleware, token_for, world):
        identity = middleware.authenticate_request(f"Bearer {token_for(world.viewer_a)}")

        assert not hasattr(identity, "password_hash")
        assert "password" not in str(identity.to_dict())

    def test_identity_is_immutable(self, middleware, token_for, world):
        identity = middleware.authenticate_request(f"Bearer {token_for(world.viewer_a)}")
        with pytest.raises(FrozenInstanceError):
            identity.role = UserRole.SUPER_ADMIN

    def test_inactive_user(self, middleware, token_for, world, db):
        token = token_for(world.viewer_a)
        db.update_user(world.viewer_a.id, active=False)

        with pytest.raises(Unauthenticated, match="User not found or inactive"):
            middleware.authenticate_request(f"Bearer {token}")

    def test_role_comes_from_user_row(self, middleware, token_for, world, db):
        """A stale role claim does not outlive a role change."""
        token = token_for(world.editor_a)
        db.update_user(world.editor_a.id, role=UserRole.VIEWER)

        identity = middleware.authenticate_request(f"Bearer {token}")
        assert identity.role == UserRole.VIEWER


# =============================================================================
# AUTHORIZATION POLICY TESTS
# =============================================================================

class TestRoleHierarchy:
    """Tests for role sets and require_role."""

    def test_role_sets(self):
        assert SUPER_ADMIN_ONLY == {UserRole.SUPER_ADMIN}
        assert ADMIN_OR_ABOVE == {UserRole.SUPER_ADMIN, UserRole.ADMIN}
        assert EDITOR_OR_ABOVE == {UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.EDITOR}
        assert ANY_ROLE == set(UserRole)

    def test_roles_at_or_above_is_monotonic(self):
        assert roles_at_or_above(UserRole.ADMIN) <= roles_at_or_above(UserRole.EDITOR)
        assert roles_at_or_above(UserRole.EDITOR) <= roles_at_or_above(UserRole.VIEWER)

    def test_viewer_denied_editor_operation(self, world):
        with pytest.raises(Forbidden):
            require_role(identity_of(world.viewer_a), EDITOR_OR_ABOVE)

    def test_editor_allowed_editor_operation(self, world):
        require_role(identity_of(world.editor_a), EDITOR_OR_ABOVE)

    def test_admin_denied_super_admin_operation(self, world):
        with pytest.raises(Forbidden):
            require_role(identity_of(world.admin_a), SUPER_ADMIN_ONLY)

    def test_super_admin_passes_any_guard(self, world):
        identity = identity_of(world.super_admin)
        for allowed in (SUPER_ADMIN_ONLY, ADMIN_OR_ABOVE, EDITOR_OR_ABOVE, ANY_ROLE, {UserRole.VIEWER}):
            require_role(identity, allowed)


class TestTenantGuard:
    """Tests for enforce_tenant, effective_airline_id and ensure_tenant_access."""

    def test_super_admin_bypasses(self, world):
        enforce_tenant(identity_of(world.super_admin), world.airline_b.id)
        ensure_tenant_access(identity_of(world.super_admin), world.airline_b.id, "chapter")

    def test_own_airline_allowed(self, world):
        enforce_tenant(identity_of(world.admin_a), world.airline_a.id)
        enforce_tenant(identity_of(world.admin_a))

    def test_cross_tenant_denied(self, world):
        with pytest.raises(Forbidden, match="You can only access your own airline data"):
            enforce_tenant(identity_of(world.admin_a), world.airline_b.id)

    def test_no_airline_denied(self):
        orphan = AuthContext(user_id="x", email="x@x.com", role=UserRole.EDITOR, airline_id=None)
        with pytest.raises(Forbidden, match="No airline association found"):
            enforce_tenant(orphan)

    def test_effective_airline_id(self, world):
        assert effective_airline_id(identity_of(world.viewer_a)) == world.airline_a.id
        assert effective_airline_id(identity_of(world.super_admin)) is None
        assert effective_airline_id(identity_of(world.super_admin), world.airline_b.id) == world.airline_b.id
        with pytest.raises(Forbidden):
            effective_airline_id(identity_of(world.viewer_a), world.airline_b.id)

    def test_ensure_tenant_access_mismatch(self, world):
        with pytest.raises(Forbidden, match="Access denied to this section"):
            ensure_tenant_access(identity_of(world.editor_a), world.airline_b.id, "section")


# =============================================================================
# AUTH SERVICE TESTS
# =============================================================================

class TestLogin:
    """Tests for AuthService.login."""

    def test_login_success(self, auth_service, world, db):
        result = auth_service.login("admin@aa.com", PASSWORD)

        assert result["token_type"] == "bearer"
        assert result["expires_in"] == 15 * 60
        assert result["user"]["email"] == "admin@aa.com"
        assert result["user"]["airline"]["code"] == "AA"
        assert "password_hash" not in result["user"]
        assert auth_service.jwt_manager.verify_access_token(result["access_token"])["sub"] == world.admin_a.id
        assert db.count_refresh_tokens(world.admin_a.id) == 1

    def test_login_updates_last_login(self, auth_service, world, db):
        auth_service.login("admin@aa.com", PASSWORD)
        assert db.get_user(world.admin_a.id).last_login is not None

    def test_login_email_is_case_insensitive(self, auth_service, world):
        result = auth_service.login("ADMIN@AA.com", PASSWORD)
        assert result["user"]["id"] == world.admin_a.id

    @pytest.mark.parametrize("email,password", [
        ("admin@aa.com", "WrongPassword1!"),
        ("nobody@aa.com", PASSWORD),
        ("", ""),
        (None, None),
    ])
    def test_login_failures_share_one_message(self, auth_service, world, email, password):
        with pytest.raises(InvalidCredentials) as exc_info:
            auth_service.login(email, password)
        assert exc_info.value.message == "Invalid credentials"

    def test_login_inactive_user(self, auth_service, world, db):
        db.update_user(world.viewer_a.id, active=False)

        with pytest.raises(InvalidCredentials, match="Invalid credentials"):
            auth_service.login("viewer@aa.com", PASSWORD)

    def test_each_login_gets_its_own_refresh_token(self, auth_service, world, db):
        first = auth_service.login("admin@aa.com", PASSWORD)
        second = auth_service.login("admin@aa.com", PASSWORD)

        assert first["refresh_token"] != second["refresh_token"]
        assert db.count_refresh_tokens(world.admin_a.id) == 2


class TestRefresh:
    """Tests for AuthService.refresh and logout."""

    def test_refresh_success(self, auth_service, world):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        result = auth_service.refresh(tokens["refresh_token"])

        payload = auth_service.jwt_manager.verify_access_token(result["access_token"])
        assert payload["sub"] == world.editor_a.id
        assert result["token_type"] == "bearer"

    def test_refresh_does_not_rotate(self, auth_service, world):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        auth_service.refresh(tokens["refresh_token"])
        auth_service.refresh(tokens["refresh_token"])

    def test_logout_then_refresh_fails(self, auth_service, world):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        auth_service.logout(tokens["refresh_token"])

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens["refresh_token"])

    def test_logout_is_idempotent(self, auth_service, world):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        auth_service.logout(tokens["refresh_token"])
        auth_service.logout(tokens["refresh_token"])
        auth_service.logout(None)
        auth_service.logout("")
        auth_service.logout("never-issued")

    def test_logout_only_revokes_one_session(self, auth_service, world):
        first = auth_service.login("editor@aa.com", PASSWORD)
        second = auth_service.login("editor@aa.com", PASSWORD)
        auth_service.logout(first["refresh_token"])

        assert auth_service.refresh(second["refresh_token"])["access_token"]

    def test_unpersisted_refresh_token(self, auth_service, world):
        """Validly signed but never stored."""
        token, _ = auth_service.jwt_manager.create_refresh_token(world.editor_a)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(token)

    def test_persisted_expiry_passed(self, auth_service, world, db):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        with db.connection() as conn:
            conn.execute("UPDATE refresh_tokens SET expires_at = ?", (_past(minutes=1),))

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens["refresh_token"])

    def test_jwt_expired_while_row_still_valid(self, auth_service, auth_config, world, db):
        """The token's own exp is checked even if the stored row has not expired."""
        stale = JWTManager(AuthConfig(
            access_secret=auth_config.access_secret,
            refresh_secret=auth_config.refresh_secret,
            refresh_token_expire_days=-1,
        ))
        token, _ = stale.create_refresh_token(world.editor_a)
        db.store_refresh_token(token, world.editor_a.id, datetime.now(timezone.utc) + timedelta(days=1))

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(token)

    def test_row_owner_mismatch(self, auth_service, world, db):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        with db.connection() as conn:
            conn.execute("UPDATE refresh_tokens SET user_id = ?", (world.viewer_a.id,))

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens["refresh_token"])

    def test_inactive_owner(self, auth_service, world, db):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        db.update_user(world.editor_a.id, active=False)

        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens["refresh_token"])

    def test_access_token_cannot_refresh(self, auth_service, world):
        tokens = auth_service.login("editor@aa.com", PASSWORD)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens["access_token"])

    def test_purge_expired_refresh_tokens(self, auth_service, world, db):
        auth_service.login("editor@aa.com", PASSWORD)
        live = auth_service.login("editor@aa.com", PASSWORD)
        with db.connection() as conn:
            conn.execute(
                "UPDATE refresh_tokens SET expires_at = ? WHERE token != ?",
                (_past(days=1), live["refresh_token"])
            )

        assert db.purge_expired_refresh_tokens() == 1
        assert db.count_refresh_tokens(world.editor_a.id) == 1


class TestPasswordReset:
    """Tests for the password reset flow."""

    def _issued_token(self, notifier) -> str:
        return notifier.send_password_reset.call_args[0][1]

    def test_request_for_known_user_dispatches_token(self, auth_service, world, notifier, db):
        auth_service.request_password_reset("viewer@aa.com")

        notifier.send_password_reset.assert_called_once()
        email, token = notifier.send_password_reset.call_args[0]
        assert email == "viewer@aa.com"
        assert re.fullmatch(r"[0-9a-f]{64}", token)

        stored = db.get_user(world.viewer_a.id)
        assert stored.reset_token_hash == hash_reset_token(token)
        assert stored.reset_token_hash != token
        expires_in = stored.reset_token_expires_at - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < expires_in <= timedelta(minutes=60)

    @pytest.mark.parametrize("email", ["nobody@aa.com", "not-an-email", "", None])
    def test_request_for_unknown_or_malformed_email_is_silent(self, auth_service, world, notifier, email):
        assert auth_service.request_password_reset(email) is None
        notifier.send_password_reset.assert_not_called()

    def test_request_for_inactive_user_is_silent(self, auth_service, world, notifier, db):
        db.update_user(world.viewer_a.id, active=False)
        auth_service.request_password_reset("viewer@aa.com")
        notifier.send_password_reset.assert_not_called()

    def test_notifier_failure_is_swallowed(self, auth_service, world, notifier):
        notifier.send_password_reset.side_effect = RuntimeError("smtp down")
        assert auth_service.request_password_reset("viewer@aa.com") is None

    def test_reset_success(self, auth_service, world, notifier, db):
        session = auth_service.login("viewer@aa.com", PASSWORD)
        auth_service.request_password_reset("viewer@aa.com")

        auth_service.reset_password(self._issued_token(notifier), "BrandNew456#")

        assert auth_service.login("viewer@aa.com", "BrandNew456#")["access_token"]
        with pytest.raises(InvalidCredentials):
            auth_service.login("viewer@aa.com", PASSWORD)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(session["refresh_token"])
        assert db.get_user(world.viewer_a.id).reset_token_hash is None

    def test_request_without_notifier_warns(self, db, auth_config, world, caplog):
        service = AuthService(db, config=auth_config)

        with caplog.at_level(logging.WARNING, logger="auth"):
            service.request_password_reset("viewer@aa.com")

        assert "No notifier configured" in caplog.text
        assert db.get_user(world.viewer_a.id).reset_token_hash is not None

    def test_reset_accepts_plain_long_password(self, auth_service, world, notifier):
        auth_service.request_password_reset("viewer@aa.com")
        auth_service.reset_password(self._issued_token(notifier), "longpassword")

        assert auth_service.login("viewer@aa.com", "longpassword")["access_token"]

    def test_reset_token_single_use(self, auth_service, world, notifier):
        auth_service.request_password_reset("viewer@aa.com")
        token = self._issued_token(notifier)
        auth_service.reset_password(token, "BrandNew456#")

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(token, "Another789$")

    def test_reset_with_expired_token(self, auth_service, world, notifier, db):
        auth_service.request_password_reset("viewer@aa.com")
        with db.connection() as conn:
            conn.execute("UPDATE users SET reset_token_expires_at = ?", (_past(seconds=1),))

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(self._issued_token(notifier), "BrandNew456#")

    @pytest.mark.parametrize("token", ["unknown-token", "", None])
    def test_reset_with_unknown_token(self, auth_service, world, token):
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(token, "BrandNew456#")

    def test_weak_password_checked_first(self, auth_service, world, notifier):
        auth_service.request_password_reset("viewer@aa.com")
        token = self._issued_token(notifier)

        with pytest.raises(ValidationError):
            auth_service.reset_password(token, "weak")
        with pytest.raises(ValidationError):
            auth_service.reset_password("unknown-token", "weak")

        # Token survives a rejected attempt
        auth_service.reset_password(token, "BrandNew456#")

    def test_new_request_replaces_old_token(self, auth_service, world, notifier):
        auth_service.request_password_reset("viewer@aa.com")
        old_token = self._issued_token(notifier)
        auth_service.request_password_reset("viewer@aa.com")
        new_token = self._issued_token(notifier)

        with pytest.raises(InvalidOrExpiredToken):
            auth_service.reset_password(old_token, "BrandNew456#")
        auth_service.reset_password(new_token, "BrandNew456#")


class TestAuthorize:
    """Tests for AuthService.authorize and protect."""

    def test_authorize_success(self, auth_service, bearer, world):
        identity = auth_service.authorize(bearer("editor@aa.com"), roles=EDITOR_OR_ABOVE, tenant_scoped=True)
        assert identity.user_id == world.editor_a.id

    def test_authentication_checked_before_role(self, auth_service, world):
        with pytest.raises(Unauthenticated):
            auth_service.authorize("Bearer garbage", roles=SUPER_ADMIN_ONLY)

    def test_role_checked_before_tenant(self, auth_service, bearer, world):
        with pytest.raises(Forbidden, match="Insufficient permissions"):
            auth_service.authorize(
                bearer("viewer@aa.com"), roles=EDITOR_OR_ABOVE,
                tenant_scoped=True, requested_airline_id=world.airline_b.id
            )

    def test_tenant_mismatch(self, auth_service, bearer, world):
        with pytest.raises(Forbidden, match="own airline"):
            auth_service.authorize(
                bearer("editor@aa.com"), roles=EDITOR_OR_ABOVE,
                tenant_scoped=True, requested_airline_id=world.airline_b.id
            )

    def test_protect_injects_identity(self, auth_service, bearer, world):
        @auth_service.protect(roles=EDITOR_OR_ABOVE, tenant_scoped=True)
        def create_thing(identity, data):
            return identity.user_id, data["title"]

        assert create_thing(bearer("editor@aa.com"), data={"title": "Ops"}) == (world.editor_a.id, "Ops")

    def test_protect_reads_airline_from_data(self, auth_service, bearer, world):
        @auth_service.protect(roles=EDITOR_OR_ABOVE, tenant_scoped=True)
        def create_thing(identity, data):
            return True

        with pytest.raises(Forbidden):
            create_thing(bearer("editor@aa.com"), data={"airline_id": world.airline_b.id})

    def test_protect_reads_airline_keyword(self, auth_service, bearer, world):
        @auth_service.protect(tenant_scoped=True)
        def list_things(identity, airline_id=None):
            return airline_id

        assert list_things(bearer("super@admin.com"), airline_id=world.airline_b.id) == world.airline_b.id
        with pytest.raises(Forbidden):
            list_things(bearer("viewer@aa.com"), airline_id=world.airline_b.id)

    def test_current_user(self, auth_service, bearer, world):
        identity = auth_service.authenticate(bearer("viewer@dl.com"))
        profile = auth_service.current_user(identity)

        assert profile["email"] == "viewer@dl.com"
        assert profile["airline"]["code"] == "DL"
