"""
JWT Authentication and Tenant-Isolation Authorization

Implements the security layer of the Airline Manual Admin backend:
- Password hashing with bcrypt
- JWT access tokens and persisted, revocable refresh tokens
- Password reset tokens (single use, time limited)
- Bearer-token authentication middleware
- Role hierarchy and per-airline tenant guards

Roles (each includes everything below it):
- SUPER_ADMIN: All airlines, airline administration
- ADMIN: User management within one airline
- EDITOR: Manual and contact editing within one airline
- VIEWER: Read-only within one airline

Requirements:
    pip install PyJWT bcrypt
"""

import os
import re
import logging
import secrets
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple, FrozenSet, Iterable, Callable
from dataclasses import dataclass, field
from functools import wraps

import jwt
import bcrypt

from database_manager import DatabaseManager, User, UserRole, utcnow
from errors import (
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidRefreshToken,
    Unauthenticated,
    ValidationError,
)

logger = logging.getLogger(__name__)


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def is_valid_email(email: Any) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(email.strip()))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class AuthConfig:
    """Authentication configuration."""
    access_secret: str = field(default_factory=lambda: os.environ.get(
        "JWT_ACCESS_SECRET", secrets.token_urlsafe(32)
    ))
    refresh_secret: str = field(default_factory=lambda: os.environ.get(
        "JWT_REFRESH_SECRET", secrets.token_urlsafe(32)
    ))
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30
    password_reset_expire_minutes: int = 60
    issuer: str = "airline-manual-admin"
    audience: str = "airline-manual-api"

    def __post_init__(self):
        if not self.access_secret or not self.refresh_secret:
            raise ValueError("JWT secrets must not be empty")
        if self.access_secret == self.refresh_secret:
            raise ValueError("Access and refresh tokens must use different secrets")


# =============================================================================
# ROLE HIERARCHY
# =============================================================================

# Most privileged first
ROLE_HIERARCHY: List[UserRole] = [
    UserRole.SUPER_ADMIN,
    UserRole.ADMIN,
    UserRole.EDITOR,
    UserRole.VIEWER,
]


def roles_at_or_above(role: UserRole) -> FrozenSet[UserRole]:
    """All roles that include the privileges of ``role``."""
    return frozenset(ROLE_HIERARCHY[:ROLE_HIERARCHY.index(role) + 1])


SUPER_ADMIN_ONLY = roles_at_or_above(UserRole.SUPER_ADMIN)
ADMIN_OR_ABOVE = roles_at_or_above(UserRole.ADMIN)
EDITOR_OR_ABOVE = roles_at_or_above(UserRole.EDITOR)
ANY_ROLE = roles_at_or_above(UserRole.VIEWER)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class AuthContext:
    """
    Identity attached to an authenticated request.

    Built from the user row, never from token claims alone, and carries no
    credential material.
    """
    user_id: str
    email: str
    role: UserRole
    airline_id: Optional[str]
    airline: Optional[Dict[str, Any]] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "role": self.role.value,
            "airline_id": self.airline_id,
            "airline": self.airline,
        }


# =============================================================================
# PASSWORD HASHING
# =============================================================================

class PasswordManager:
    """Secure password hashing using bcrypt."""

    # Work factor for bcrypt (higher = more secure but slower)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # bcrypt ignores everything past this many bytes
    MAX_BYTES = 72

    @classmethod
    def _encode(cls, password: str) -> bytes:
        return password.encode('utf-8')[:cls.MAX_BYTES]

    @classmethod
    def hash_password(cls, password: str) -> str:
        """
        Hash a password using bcrypt with a fresh salt.

        Strength is not checked here; callers validate first.

        Args:
            password: Plain text password

        Returns:
            Hashed password string
        """
        salt = bcrypt.gensalt(rounds=cls.BCRYPT_ROUNDS)
        hashed = bcrypt.hashpw(cls._encode(password), salt)
        return hashed.decode('utf-8')

    @classmethod
    def verify_password(cls, password: str, password_hash: Optional[str]) -> bool:
        """
        Verify a password against its hash.

        Returns:
            True if password matches, False otherwise (including a malformed hash)
        """
        if not isinstance(password, str) or not password_hash:
            return False

        try:
            return bcrypt.checkpw(cls._encode(password), password_hash.encode('utf-8'))
        except (ValueError, TypeError):
            logger.warning("Password verification against malformed hash")
            return False

    @classmethod
    def validate_password_strength(cls, password: str) -> Tuple[bool, List[str]]:
        """
        Validate password meets security requirements.

        Only length is checked: 8 to 128 characters. No character classes.

        Returns:
            Tuple of (is_valid, list_of_issues)
        """
        if not isinstance(password, str):
            return False, ["Password is required"]

        issues = []

        if len(password) < MIN_PASSWORD_LENGTH:
            issues.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password) > MAX_PASSWORD_LENGTH:
            issues.append(f"Password must be less than {MAX_PASSWORD_LENGTH} characters")

        return len(issues) == 0, issues

    @classmethod
    def require_strong_password(cls, password: str) -> None:
        """Raise ValidationError listing every unmet requirement."""
        is_valid, issues = cls.validate_password_strength(password)
        if not is_valid:
            raise ValidationError(
                "Password does not meet security requirements",
                details={"issues": issues}
            )


def hash_reset_token(token: str) -> str:
    """Digest stored in place of a raw password reset token."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


# =============================================================================
# JWT TOKEN MANAGER
# =============================================================================

class JWTManager:
    """
    JWT token generation and validation.

    Access and refresh tokens are signed with different secrets, so one can
    never be replayed as the other. Revocation of refresh tokens lives in the
    database; this class only deals with signatures and claims.

    Usage:
        jwt_mgr = JWTManager(AuthConfig())

        access_token = jwt_mgr.create_access_token(user)
        refresh_token, expires_at = jwt_mgr.create_refresh_token(user)

        payload = jwt_mgr.verify_access_token(access_token)
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    def create_access_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "airline_id": user.airline_id,
            "iat": now,
            "exp": now + timedelta(minutes=self.config.access_token_expire_minutes),
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "jti": secrets.token_urlsafe(16),
            "type": "access"
        }
        return jwt.encode(payload, self.config.access_secret, algorithm=self.config.algorithm)

    def create_refresh_token(self, user: User) -> Tuple[str, datetime]:
        """
        Returns:
            Tuple of (refresh_token, expires_at)
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(days=self.config.refresh_token_expire_days)
        payload = {
            "sub": user.id,
            "iat": now,
            "exp": expires_at,
            "iss": self.config.issuer,
            "jti": secrets.token_urlsafe(16),
            "type": "refresh"
        }
        token = jwt.encode(payload, self.config.refresh_secret, algorithm=self.config.algorithm)
        return token, expires_at

    def _decode(
        self,
        token: Any,
        secret: str,
        token_type: str,
        audience: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        if not isinstance(token, str) or not token:
            return None

        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.config.algorithm],
                audience=audience,
                issuer=self.config.issuer,
                options={"require": ["exp", "iat", "sub"]}
            )
        except jwt.ExpiredSignatureError:
            logger.warning(f"{token_type.capitalize()} token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid {token_type} token: {e}")
            return None

        if payload.get("type") != token_type:
            logger.warning(f"Token type mismatch: expected {token_type}")
            return None

        return payload

    def verify_access_token(self, token: Any) -> Optional[Dict[str, Any]]:
        """
        Validate an access token.

        Returns:
            Token payload if valid, None otherwise
        """
        return self._decode(token, self.config.access_secret, "access", audience=self.config.audience)

    def verify_refresh_token(self, token: Any) -> Optional[Dict[str, Any]]:
        """Signature and expiry only; the persisted row is checked by AuthService."""
        return self._decode(token, self.config.refresh_secret, "refresh")


# =============================================================================
# AUTHENTICATION MIDDLEWARE
# =============================================================================

class AuthMiddleware:
    """
    Turns an Authorization header into an AuthContext.

    Usage with Flask:
        auth = AuthMiddleware(jwt_manager, db)

        @app.before_request
        def authenticate():
            g.identity = auth.authenticate_request(request.headers.get("Authorization"))
    """

    def __init__(self, jwt_manager: JWTManager, db: DatabaseManager):
        self.jwt_manager = jwt_manager
        self.db = db

    def authenticate_request(self, authorization_header: Optional[str]) -> AuthContext:
        """
        Authenticate a request. Read-only.

        Args:
            authorization_header: "Bearer <token>" header value

        Returns:
            AuthContext of the active user

        Raises:
            Unauthenticated: header missing or malformed, token invalid,
                user missing or inactive
        """
        if not isinstance(authorization_header, str):
            raise Unauthenticated("No token provided")

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthenticated("No token provided")

        payload = self.jwt_manager.verify_access_token(parts[1])
        if not payload:
            raise Unauthenticated("Invalid or expired token")

        user = self.db.get_user(payload["sub"])
        if not user or not user.active:
            logger.warning(f"Token presented for missing or inactive user {payload['sub']}")
            raise Unauthenticated("User not found or inactive")

        airline = None
        if user.airline_id:
            record = self.db.get_airline(user.airline_id)
            if record:
                airline = {"id": record.id, "code": record.code, "name": record.name}

        return AuthContext(
            user_id=user.id,
            email=user.email,
            role=user.role,
            airline_id=user.airline_id,
            airline=airline,
        )


# =============================================================================
# AUTHORIZATION POLICY
# =============================================================================

def require_role(identity: AuthContext, allowed_roles: Iterable[UserRole]) -> None:
    """Raise Forbidden unless the identity holds one of ``allowed_roles``."""
    if identity.is_super_admin:
        return
    if identity.role not in set(allowed_roles):
        logger.warning(f"Role {identity.role.value} denied for {identity.email}")
        raise Forbidden("Insufficient permissions")


def enforce_tenant(identity: AuthContext, requested_airline_id: Optional[str] = None) -> None:
    """
    Tenant guard. SUPER_ADMIN passes; everyone else needs an airline and,
    when one is requested, it must be their own.
    """
    if identity.is_super_admin:
        return
    if not identity.airline_id:
        raise Forbidden("No airline association found")
    if requested_airline_id and requested_airline_id != identity.airline_id:
        logger.warning(
            f"Cross-tenant request by {identity.email}: "
            f"own {identity.airline_id}, requested {requested_airline_id}"
        )
        raise Forbidden("You can only access your own airline data")


def effective_airline_id(identity: AuthContext, requested_airline_id: Optional[str] = None) -> Optional[str]:
    """
    Airline a query should be scoped to.

    Non-SUPER_ADMIN callers always get their own airline (a different
    explicit request is Forbidden). SUPER_ADMIN gets the request as given,
    where None means every airline.
    """
    if identity.is_super_admin:
        return requested_airline_id
    enforce_tenant(identity, requested_airline_id)
    return identity.airline_id


def ensure_tenant_access(
    identity: AuthContext,
    resource_airline_id: Optional[str],
    resource_label: str = "resource"
) -> None:
    """Per-object check: the resource's airline must be the caller's."""
    if identity.is_super_admin:
        return
    if not identity.airline_id:
        raise Forbidden("No airline association found")
    if resource_airline_id != identity.airline_id:
        logger.warning(f"Denied {resource_label} of airline {resource_airline_id} to {identity.email}")
        raise Forbidden(f"Access denied to this {resource_label}")


# =============================================================================
# AUTHENTICATION SERVICE
# =============================================================================

class AuthService:
    """
    High-level authentication service.

    Combines token management, the credential store and the authorization
    policy for complete auth flows.

    Usage:
        db = DatabaseManager("data/manuals.db")
        db.initialize()
        auth_service = AuthService(db, notifier=Mailer())

        result = auth_service.login("admin@aa.com", "Admin123!")
        identity = auth_service.authorize(
            f"Bearer {result['access_token']}",
            roles=EDITOR_OR_ABOVE,
            tenant_scoped=True,
        )
    """

    def __init__(
        self,
        db: DatabaseManager,
        config: Optional[AuthConfig] = None,
        notifier: Optional[Any] = None
    ):
        """
        Args:
            db: Initialized DatabaseManager
            config: Authentication configuration
            notifier: Object with send_password_reset(email, token)
        """
        self.db = db
        self.config = config or AuthConfig()
        self.notifier = notifier
        self.jwt_manager = JWTManager(self.config)
        self.middleware = AuthMiddleware(self.jwt_manager, db)

        logger.info("AuthService initialized")

    # -------------------------------------------------------------------------
    # Login / refresh / logout
    # -------------------------------------------------------------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate user and issue tokens.

        Returns:
            Dict with access_token, refresh_token, token_type, expires_in, user

        Raises:
            InvalidCredentials: for every failure cause
        """
        if not isinstance(email, str) or not isinstance(password, str):
            raise InvalidCredentials()

        user = self.db.get_user_by_email(email)

        if not user:
            logger.warning(f"Authentication failed: user not found: {email}")
            raise InvalidCredentials()

        if not user.active:
            logger.warning(f"Authentication failed: user inactive: {email}")
            raise InvalidCredentials()

        if not PasswordManager.verify_password(password, user.password_hash):
            logger.warning(f"Authentication failed: wrong password: {email}")
            raise InvalidCredentials()

        access_token = self.jwt_manager.create_access_token(user)
        refresh_token, expires_at = self.jwt_manager.create_refresh_token(user)
        self.db.store_refresh_token(refresh_token, user.id, expires_at)
        self.db.touch_last_login(user.id)

        logger.info(f"User authenticated: {user.email}")

        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": self.config.access_token_expire_minutes * 60,
            "user": self._user_with_airline(user)
        }

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """
        Issue a new access token from a persisted refresh token.

        The refresh token itself is not rotated.

        Raises:
            InvalidRefreshToken: bad signature, expired, revoked, owner
                mismatch or owner inactive
        """
        payload = self.jwt_manager.verify_refresh_token(refresh_token)
        if not payload:
            raise InvalidRefreshToken()

        found = self.db.get_refresh_token(refresh_token)
        if not found:
            logger.warning("Refresh token not found (revoked or never issued)")
            raise InvalidRefreshToken()

        record, user = found
        if record.is_expired():
            raise InvalidRefreshToken()
        if record.user_id != payload.get("sub"):
            logger.warning("Refresh token user mismatch")
            raise InvalidRefreshToken()
        if not user.active:
            logger.warning(f"Refresh denied for inactive user {user.email}")
            raise InvalidRefreshToken()

        return {
            "access_token": self.jwt_manager.create_access_token(user),
            "token_type": "bearer",
            "expires_in": self.config.access_token_expire_minutes * 60
        }

    def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke a refresh token. Unknown or empty tokens are a no-op."""
        if not refresh_token:
            return
        if self.db.delete_refresh_token(refresh_token):
            logger.info("Refresh token revoked")

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    def request_password_reset(self, email: str) -> None:
        """
        Start a password reset.

        Returns nothing and raises nothing whether or not the account exists.
        """
        if not is_valid_email(email):
            return

        user = self.db.get_user_by_email(email)
        if not user or not user.active:
            logger.info("Password reset requested for unknown or inactive account")
            return

        token = secrets.token_hex(32)
        expires_at = utcnow() + timedelta(minutes=self.config.password_reset_expire_minutes)
        self.db.set_reset_token(user.id, hash_reset_token(token), expires_at)
        logger.info(f"Password reset token issued for user {user.id}")

        if self.notifier is None:
            logger.warning(f"No notifier configured; reset token for user {user.id} was not delivered")
            return
        try:
            result = self.notifier.send_password_reset(user.email, token)
        except Exception as e:
            logger.error(f"Password reset notification failed for user {user.id}: {e}")
            return
        if isinstance(result, dict) and not result.get("success"):
            logger.error(f"Password reset notification failed for user {user.id}: {result.get('error')}")

    def reset_password(self, token: str, new_password: str) -> None:
        """
        Complete a password reset.

        Raises:
            ValidationError: new password too weak
            InvalidOrExpiredToken: token unknown, used, or expired
        """
        PasswordManager.require_strong_password(new_password)

        if not isinstance(token, str) or not token:
            raise InvalidOrExpiredToken()

        token_hash = hash_reset_token(token)
        user = self.db.get_user_by_reset_token_hash(token_hash)
        if not user or not user.reset_token_expires_at:
            raise InvalidOrExpiredToken()
        if user.reset_token_expires_at < utcnow():
            raise InvalidOrExpiredToken()

        password_hash = PasswordManager.hash_password(new_password)
        if not self.db.consume_reset_token(user.id, token_hash, password_hash):
            raise InvalidOrExpiredToken()

        logger.info(f"Password reset completed for user {user.id}")

    # -------------------------------------------------------------------------
    # Request authentication / authorization
    # -------------------------------------------------------------------------

    def authenticate(self, authorization_header: Optional[str]) -> AuthContext:
        return self.middleware.authenticate_request(authorization_header)

    def authorize(
        self,
        authorization_header: Optional[str],
        roles: Optional[Iterable[UserRole]] = None,
        tenant_scoped: bool = False,
        requested_airline_id: Optional[str] = None
    ) -> AuthContext:
        """
        Authenticate, then apply the role guard, then the tenant guard.

        The first failing step raises; later steps do not run.
        """
        identity = self.authenticate(authorization_header)
        if roles is not None:
            require_role(identity, roles)
        if tenant_scoped:
            enforce_tenant(identity, requested_airline_id)
        return identity

    def protect(self, roles: Optional[Iterable[UserRole]] = None, tenant_scoped: bool = False):
        """
        Decorator version of authorize().

        The wrapped callable takes the Authorization header as its first
        argument and receives the AuthContext in its place. The requested
        airline is read from an ``airline_id`` keyword or from a ``data``
        dict keyword.

        Usage:
            @auth_service.protect(roles=EDITOR_OR_ABOVE, tenant_scoped=True)
            def create_chapter(identity, data):
                ...

            create_chapter("Bearer eyJ...", data={"title": "Ops"})
        """
        def decorator(func: Callable):
            @wraps(func)
            def wrapper(authorization: Optional[str], *args, **kwargs):
                requested = kwargs.get("airline_id")
                data = kwargs.get("data")
                if not requested and isinstance(data, dict):
                    requested = data.get("airline_id")

                identity = self.authorize(
                    authorization,
                    roles=roles,
                    tenant_scoped=tenant_scoped,
                    requested_airline_id=requested
                )
                return func(identity, *args, **kwargs)

            return wrapper
        return decorator

    def current_user(self, identity: AuthContext) -> Dict[str, Any]:
        """Profile of the authenticated user."""
        user = self.db.get_user(identity.user_id)
        if not user or not user.active:
            raise Unauthenticated("User not found or inactive")
        return self._user_with_airline(user)

    def _user_with_airline(self, user: User) -> Dict[str, Any]:
        data = user.to_dict()
        data["airline"] = None
        if user.airline_id:
            airline = self.db.get_airline(user.airline_id)
            if airline:
                data["airline"] = {"id": airline.id, "code": airline.code, "name": airline.name}
        return data


# =============================================================================
# USAGE EXAMPLE
# =============================================================================

if __name__ == "__main__":
    import tempfile

    logging.basicConfig(level=logging.INFO)

    print("=" * 60)
    print("JWT Authentication System Demo")
    print("=" * 60)

    db = DatabaseManager(os.path.join(tempfile.mkdtemp(), "demo.db"))
    db.initialize()
    auth = AuthService(db)

    print("\n1. Creating airline and users...")
    airline = db.create_airline("American Airlines", "AA")
    db.create_user("admin@aa.com", PasswordManager.hash_password("AdminPass123!"),
                   UserRole.ADMIN, airline.id, first_name="Airline", last_name="Admin")
    db.create_user("viewer@aa.com", PasswordManager.hash_password("ViewPass123!"),
                   UserRole.VIEWER, airline.id, first_name="Read", last_name="Only")
    print(f"   ✓ Airline: {airline.code}")

    print("\n2. Login...")
    result = auth.login("viewer@aa.com", "ViewPass123!")
    print(f"   ✓ Access token: {result['access_token'][:50]}...")
    print(f"   ✓ Expires in: {result['expires_in']} seconds")

    print("\n3. Authorizing a read...")
    identity = auth.authorize(f"Bearer {result['access_token']}", roles=ANY_ROLE, tenant_scoped=True)
    print(f"   ✓ Identity: {identity.email} ({identity.role.value})")

    print("\n4. Testing role denial...")
    try:
        auth.authorize(f"Bearer {result['access_token']}", roles=EDITOR_OR_ABOVE)
    except Forbidden as e:
        print(f"   ✓ Denied: {e.message}")

    print("\n5. Refreshing token...")
    new_tokens = auth.refresh(result['refresh_token'])
    print(f"   ✓ New access token: {new_tokens['access_token'][:50]}...")

    print("\n6. Logging out...")
    auth.logout(result['refresh_token'])
    try:
        auth.refresh(result['refresh_token'])
    except InvalidRefreshToken:
        print("   ✓ Revoked refresh token rejected")
