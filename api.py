"""
AdminAPI: the route table of the Airline Manual Admin backend.

Each method is one endpoint. It takes the raw Authorization header (where
the endpoint is protected), runs authentication, the role guard and the
tenant guard, calls the service, and returns a (body, status_code) pair
built by api_response. Nothing here raises; errors come back as envelopes.
A missing request body is treated as an empty one.

Usage with Flask:
    api = AdminAPI(db, mailer=Mailer())

    @app.post("/api/chapters")
    def create_chapter():
        body, status = api.create_chapter(request.headers.get("Authorization"), request.json)
        return jsonify(body), status
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from airline_service import AirlineService
from api_response import Response, created, handle, success
from auth import (
    ADMIN_OR_ABOVE,
    ANY_ROLE,
    EDITOR_OR_ABOVE,
    SUPER_ADMIN_ONLY,
    AuthConfig,
    AuthContext,
    AuthService,
)
from contact_service import ContactService
from database_manager import DatabaseManager, UserRole
from manual_service import ManualService
from notifier import Mailer
from search_service import DEFAULT_LIMIT, SearchService
from user_service import UserService

logger = logging.getLogger(__name__)


class AdminAPI:
    """In-process API facade over the services."""

    def __init__(
        self,
        db: DatabaseManager,
        config: Optional[AuthConfig] = None,
        mailer: Optional[Any] = None,
        auth_service: Optional[AuthService] = None
    ):
        self.db = db
        if mailer is None:
            mailer = Mailer()
        self.auth = auth_service or AuthService(db, config=config, notifier=mailer)
        self.airlines = AirlineService(db)
        self.users = UserService(db)
        self.manual = ManualService(db)
        self.contacts = ContactService(db)
        self.search_service = SearchService(db)

    def _call(
        self,
        authorization: Optional[str],
        action: Callable[[AuthContext], Any],
        roles: Iterable[UserRole] = ANY_ROLE,
        tenant_scoped: bool = False,
        requested_airline_id: Optional[str] = None,
        message: Optional[str] = None,
        created_response: bool = False
    ) -> Response:
        def run() -> Response:
            identity = self.auth.authorize(
                authorization,
                roles=roles,
                tenant_scoped=tenant_scoped,
                requested_airline_id=requested_airline_id
            )
            result = action(identity)
            if created_response:
                return created(result, message or "Resource created successfully")
            return success(result, message)

        return handle(run)

    # =========================================================================
    # AUTH
    # =========================================================================

    def login(self, email: str, password: str) -> Response:
        return handle(lambda: success(self.auth.login(email, password), "Login successful"))

    def refresh(self, refresh_token: str) -> Response:
        return handle(lambda: success(self.auth.refresh(refresh_token), "Token refreshed"))

    def logout(self, refresh_token: Optional[str]) -> Response:
        def run() -> Response:
            self.auth.logout(refresh_token)
            return success(None, "Logout successful")
        return handle(run)

    def request_password_reset(self, email: str) -> Response:
        def run() -> Response:
            self.auth.request_password_reset(email)
            return success(None, "If the email exists, a password reset link has been sent")
        return handle(run)

    def reset_password(self, token: str, new_password: str) -> Response:
        def run() -> Response:
            self.auth.reset_password(token, new_password)
            return success(None, "Password has been reset successfully")
        return handle(run)

    def me(self, authorization: Optional[str]) -> Response:
        return self._call(authorization, self.auth.current_user)

    # =========================================================================
    # AIRLINES
    # =========================================================================

    def list_airlines(self, authorization: Optional[str], include_inactive: bool = False) -> Response:
        return self._call(
            authorization,
            lambda identity: self.airlines.list_airlines(include_inactive),
            roles=SUPER_ADMIN_ONLY
        )

    def get_airline(self, authorization: Optional[str], airline_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.airlines.get_airline(airline_id, identity),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, requested_airline_id=airline_id
        )

    def create_airline(self, authorization: Optional[str], data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.airlines.create_airline(data),
            roles=SUPER_ADMIN_ONLY, message="Airline created successfully", created_response=True
        )

    def update_airline(self, authorization: Optional[str], airline_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.airlines.update_airline(identity, airline_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, requested_airline_id=airline_id,
            message="Airline updated successfully"
        )

    def delete_airline(self, authorization: Optional[str], airline_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.airlines.delete_airline(airline_id),
            roles=SUPER_ADMIN_ONLY, message="Airline deleted successfully"
        )

    def activate_airline(self, authorization: Optional[str], airline_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.airlines.activate_airline(airline_id),
            roles=SUPER_ADMIN_ONLY, message="Airline activated successfully"
        )

    def deactivate_airline(self, authorization: Optional[str], airline_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.airlines.deactivate_airline(airline_id),
            roles=SUPER_ADMIN_ONLY, message="Airline deactivated successfully"
        )

    # =========================================================================
    # USERS
    # =========================================================================

    def list_users(
        self,
        authorization: Optional[str],
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.users.list_users(identity, airline_id, include_inactive),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True, requested_airline_id=airline_id
        )

    def get_user(self, authorization: Optional[str], user_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.users.get_user(identity, user_id),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True
        )

    def create_user(self, authorization: Optional[str], data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.users.create_user(identity, data),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True, requested_airline_id=data.get("airline_id"),
            message="User created successfully", created_response=True
        )

    def update_user(self, authorization: Optional[str], user_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.users.update_user(identity, user_id, data),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True, requested_airline_id=data.get("airline_id"),
            message="User updated successfully"
        )

    def deactivate_user(self, authorization: Optional[str], user_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.users.deactivate_user(identity, user_id),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True, message="User deactivated successfully"
        )

    def activate_user(self, authorization: Optional[str], user_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.users.activate_user(identity, user_id),
            roles=ADMIN_OR_ABOVE, tenant_scoped=True, message="User activated successfully"
        )

    def change_password(self, authorization: Optional[str], user_id: str, new_password: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.users.change_password(identity, user_id, new_password),
            message="Password changed successfully"
        )

    # =========================================================================
    # MANUAL: CHAPTERS
    # =========================================================================

    def list_chapters(
        self,
        authorization: Optional[str],
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.list_chapters(identity, airline_id, include_inactive)
        )

    def get_chapter(self, authorization: Optional[str], chapter_id: str) -> Response:
        return self._call(authorization, lambda identity: self.manual.get_chapter(identity, chapter_id))

    def create_chapter(self, authorization: Optional[str], data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.create_chapter(identity, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, requested_airline_id=data.get("airline_id"),
            message="Chapter created successfully", created_response=True
        )

    def update_chapter(self, authorization: Optional[str], chapter_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.update_chapter(identity, chapter_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Chapter updated successfully"
        )

    def delete_chapter(self, authorization: Optional[str], chapter_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.delete_chapter(identity, chapter_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Chapter deleted successfully"
        )

    # =========================================================================
    # MANUAL: SECTIONS
    # =========================================================================

    def list_sections(
        self,
        authorization: Optional[str],
        chapter_id: str,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.list_sections(identity, chapter_id, include_inactive),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True
        )

    def get_section(self, authorization: Optional[str], section_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.get_section(identity, section_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True
        )

    def create_section(self, authorization: Optional[str], chapter_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.create_section(identity, chapter_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True,
            message="Section created successfully", created_response=True
        )

    def update_section(self, authorization: Optional[str], section_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.update_section(identity, section_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Section updated successfully"
        )

    def delete_section(self, authorization: Optional[str], section_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.delete_section(identity, section_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Section deleted successfully"
        )

    # =========================================================================
    # MANUAL: CONTENTS
    # =========================================================================

    def list_contents(
        self,
        authorization: Optional[str],
        section_id: str,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.list_contents(identity, section_id, include_inactive),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True
        )

    def get_content(self, authorization: Optional[str], content_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.get_content(identity, content_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True
        )

    def create_content(self, authorization: Optional[str], section_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.create_content(identity, section_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True,
            message="Content created successfully", created_response=True
        )

    def update_content(self, authorization: Optional[str], content_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.manual.update_content(identity, content_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Content updated successfully"
        )

    def delete_content(self, authorization: Optional[str], content_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.manual.delete_content(identity, content_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Content deleted successfully"
        )

    # =========================================================================
    # CONTACTS
    # =========================================================================

    def list_contact_groups(
        self,
        authorization: Optional[str],
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.contacts.list_groups(identity, airline_id, include_inactive)
        )

    def get_contact_group(self, authorization: Optional[str], group_id: str) -> Response:
        return self._call(authorization, lambda identity: self.contacts.get_group(identity, group_id))

    def create_contact_group(self, authorization: Optional[str], data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.contacts.create_group(identity, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, requested_airline_id=data.get("airline_id"),
            message="Contact group created successfully", created_response=True
        )

    def update_contact_group(self, authorization: Optional[str], group_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.contacts.update_group(identity, group_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Contact group updated successfully"
        )

    def delete_contact_group(self, authorization: Optional[str], group_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.contacts.delete_group(identity, group_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Contact group deleted successfully"
        )

    def list_contacts(
        self,
        authorization: Optional[str],
        group_id: str,
        include_inactive: bool = False
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.contacts.list_contacts(identity, group_id, include_inactive)
        )

    def get_contact(self, authorization: Optional[str], contact_id: str) -> Response:
        return self._call(authorization, lambda identity: self.contacts.get_contact(identity, contact_id))

    def create_contact(self, authorization: Optional[str], data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.contacts.create_contact(identity, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True,
            message="Contact created successfully", created_response=True
        )

    def update_contact(self, authorization: Optional[str], contact_id: str, data: Optional[Dict[str, Any]]) -> Response:
        data = data or {}
        return self._call(
            authorization,
            lambda identity: self.contacts.update_contact(identity, contact_id, data),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Contact updated successfully"
        )

    def delete_contact(self, authorization: Optional[str], contact_id: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.contacts.delete_contact(identity, contact_id),
            roles=EDITOR_OR_ABOVE, tenant_scoped=True, message="Contact deleted successfully"
        )

    # =========================================================================
    # SEARCH
    # =========================================================================

    def search(
        self,
        authorization: Optional[str],
        query: str,
        include_inactive: bool = False,
        limit: int = DEFAULT_LIMIT
    ) -> Response:
        return self._call(
            authorization,
            lambda identity: self.search_service.global_search(identity, query, include_inactive, limit)
        )

    def search_in_chapter(self, authorization: Optional[str], chapter_id: str, query: str) -> Response:
        return self._call(
            authorization,
            lambda identity: self.search_service.search_in_chapter(identity, chapter_id, query)
        )
