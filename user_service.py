"""
User administration within the tenant boundary.

SUPER_ADMIN manages every user; ADMIN manages the users of its own airline.
Users are never hard-deleted: deactivation keeps the row and blocks login,
refresh and any access token still in circulation.
"""

import logging
from typing import Any, Dict, List, Optional

from auth import (
    ADMIN_OR_ABOVE,
    AuthContext,
    PasswordManager,
    effective_airline_id,
    enforce_tenant,
    ensure_tenant_access,
    is_valid_email,
)
from database_manager import DatabaseManager, User, UserRole, check_role_airline
from errors import Conflict, Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)


def parse_role(value: Any) -> UserRole:
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(str(value).strip().upper())
    except ValueError:
        valid = ", ".join(role.value for role in UserRole)
        raise ValidationError(f"Invalid role. Must be one of: {valid}")


def _required_text(data: Dict[str, Any], key: str, label: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


class UserService:
    """
    Usage:
        users = UserService(db)
        users.create_user(identity, {
            "email": "editor@aa.com", "password": "Editor123!",
            "first_name": "Ed", "last_name": "Itor", "role": "EDITOR",
        })
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _serialize(self, user: User) -> Dict[str, Any]:
        data = user.to_dict()
        data["airline"] = None
        if user.airline_id:
            airline = self.db.get_airline(user.airline_id)
            if airline:
                data["airline"] = {"id": airline.id, "code": airline.code, "name": airline.name}
        return data

    def _load(self, identity: AuthContext, user_id: str) -> User:
        user = self.db.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        ensure_tenant_access(identity, user.airline_id, "user")
        return user

    def list_users(
        self,
        identity: AuthContext,
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        scope = effective_airline_id(identity, airline_id)
        return [self._serialize(user) for user in self.db.list_users(scope, include_inactive)]

    def get_user(self, identity: AuthContext, user_id: str) -> Dict[str, Any]:
        return self._serialize(self._load(identity, user_id))

    def create_user(self, identity: AuthContext, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a user.

        Raises:
            ValidationError: bad email, weak password, missing names, bad role,
                or a role/airline combination that breaks the invariant
            Conflict: email already exists
            NotFound: target airline does not exist
            Forbidden: caller may not create users for that airline
        """
        if identity.role not in ADMIN_OR_ABOVE:
            raise Forbidden("Only SUPER_ADMIN and ADMIN can create users")

        email = data.get("email")
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("Email is required")
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")

        password = data.get("password")
        PasswordManager.require_strong_password(password)

        first_name = _required_text(data, "first_name", "First name")
        last_name = _required_text(data, "last_name", "Last name")

        if not data.get("role"):
            raise ValidationError("Role is required")
        role = parse_role(data["role"])

        if self.db.get_user_by_email(email):
            raise Conflict("Email already exists")

        requested_airline = data.get("airline_id")
        if role == UserRole.SUPER_ADMIN:
            if requested_airline:
                raise ValidationError("SUPER_ADMIN cannot be associated with an airline")
            if not identity.is_super_admin:
                raise Forbidden("Only SUPER_ADMIN can create SUPER_ADMIN users")
            target_airline = None
        else:
            if identity.is_super_admin:
                target_airline = requested_airline
            else:
                enforce_tenant(identity, requested_airline)
                target_airline = identity.airline_id

            check_role_airline(role, target_airline)
            if not self.db.get_airline(target_airline):
                raise NotFound("Airline not found")

        user = self.db.create_user(
            email=email,
            password_hash=PasswordManager.hash_password(password),
            role=role,
            airline_id=target_airline,
            first_name=first_name,
            last_name=last_name,
            active=bool(data.get("active", True)),
        )
        logger.info(f"User {user.email} created by {identity.email}")
        return self._serialize(user)

    def update_user(self, identity: AuthContext, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update provided fields only.

        Role and airline changes are SUPER_ADMIN only. A password change
        revokes every refresh token of the user.
        """
        existing = self._load(identity, user_id)
        fields: Dict[str, Any] = {}

        if "email" in data:
            email = data["email"]
            if not isinstance(email, str) or not email.strip():
                raise ValidationError("Email cannot be empty")
            if not is_valid_email(email):
                raise ValidationError("Invalid email format")
            other = self.db.get_user_by_email(email)
            if other and other.id != user_id:
                raise Conflict("Email already exists")
            fields["email"] = email

        for key, label in (("first_name", "First name"), ("last_name", "Last name")):
            if key in data:
                value = data[key]
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{label} cannot be empty")
                fields[key] = value.strip()

        if "role" in data:
            if not identity.is_super_admin:
                raise Forbidden("Only SUPER_ADMIN can change user roles")
            fields["role"] = parse_role(data["role"])

        if "airline_id" in data:
            if not identity.is_super_admin:
                raise Forbidden("Only SUPER_ADMIN can change airline assignments")
            airline_id = data["airline_id"] or None
            if airline_id and not self.db.get_airline(airline_id):
                raise NotFound("Airline not found")
            fields["airline_id"] = airline_id

        if "active" in data:
            if not data["active"] and existing.id == identity.user_id:
                raise ValidationError("You cannot deactivate your own account")
            fields["active"] = bool(data["active"])

        # Role/airline pair must stay valid after the merge
        check_role_airline(
            fields.get("role", existing.role),
            fields.get("airline_id", existing.airline_id)
        )

        password_hash = None
        if "password" in data:
            PasswordManager.require_strong_password(data["password"])
            password_hash = PasswordManager.hash_password(data["password"])

        user = self.db.update_user(user_id, **fields) if fields else existing
        if password_hash:
            revoked = self.db.set_password(user_id, password_hash)
            logger.info(f"Password of user {user_id} changed, {revoked} refresh tokens revoked")
        if fields.get("active") is False:
            self.db.delete_refresh_tokens_for_user(user_id)

        logger.info(f"User {user_id} updated by {identity.email}")
        return self._serialize(user)

    def deactivate_user(self, identity: AuthContext, user_id: str) -> None:
        user = self._load(identity, user_id)
        if user.id == identity.user_id:
            raise ValidationError("You cannot delete your own account")

        self.db.update_user(user_id, active=False)
        self.db.delete_refresh_tokens_for_user(user_id)
        logger.info(f"User {user.email} deactivated by {identity.email}")

    def activate_user(self, identity: AuthContext, user_id: str) -> None:
        user = self._load(identity, user_id)
        self.db.update_user(user_id, active=True)
        logger.info(f"User {user.email} activated by {identity.email}")

    def change_password(self, identity: AuthContext, user_id: str, new_password: str) -> None:
        """
        Set a new password for yourself, or for a user of your airline as ADMIN.

        Every refresh token of the user is revoked.
        """
        user = self.db.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        if user.id != identity.user_id:
            if identity.role not in ADMIN_OR_ABOVE:
                raise Forbidden("Access denied to change this password")
            ensure_tenant_access(identity, user.airline_id, "user")

        PasswordManager.require_strong_password(new_password)
        revoked = self.db.set_password(user_id, PasswordManager.hash_password(new_password))
        logger.info(f"Password of user {user_id} changed, {revoked} refresh tokens revoked")
