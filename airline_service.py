"""
Airline (tenant) administration.

Listing, creation, deletion and (de)activation are SUPER_ADMIN operations,
guarded at the API layer. Reading and updating an airline is open to its
own EDITOR and above; the service re-checks the tenant itself.
"""

import logging
from typing import Any, Dict, List, Optional

from auth import AuthContext, ensure_tenant_access
from database_manager import DatabaseManager
from errors import Conflict, Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)


class AirlineService:
    """
    Usage:
        airlines = AirlineService(db)
        aa = airlines.create_airline({"name": "American Airlines", "code": "aa"})
        airlines.deactivate_airline(aa["id"])
    """

    # Fields only SUPER_ADMIN may change
    RESTRICTED_FIELDS = ("code", "active")

    def __init__(self, db: DatabaseManager):
        self.db = db

    def list_airlines(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        return [airline.to_dict() for airline in self.db.list_airlines(include_inactive)]

    def get_airline(self, airline_id: str, identity: Optional[AuthContext] = None) -> Dict[str, Any]:
        if identity is not None:
            ensure_tenant_access(identity, airline_id, "airline")

        airline = self.db.get_airline(airline_id)
        if not airline:
            raise NotFound("Airline not found")
        return airline.to_dict()

    def create_airline(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = (data.get("name") or "").strip()
        code = (data.get("code") or "").strip()
        if not name:
            raise ValidationError("Airline name is required")
        if not code:
            raise ValidationError("Airline code is required")

        if self.db.get_airline_by_code(code):
            raise Conflict("Airline code already exists")

        airline = self.db.create_airline(
            name=name,
            code=code,
            logo=data.get("logo"),
            branding=data.get("branding"),
        )
        return airline.to_dict()

    def update_airline(self, identity: AuthContext, airline_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update provided fields only.

        Raises:
            Forbidden: other airline, or a non-SUPER_ADMIN touching code/active
            NotFound: airline does not exist
            Conflict: code already used by another airline
        """
        ensure_tenant_access(identity, airline_id, "airline")

        if not self.db.get_airline(airline_id):
            raise NotFound("Airline not found")

        fields = {
            key: data[key]
            for key in self.db.AIRLINE_UPDATABLE_FIELDS
            if key in data
        }
        if not identity.is_super_admin:
            restricted = [key for key in self.RESTRICTED_FIELDS if key in fields]
            if restricted:
                raise Forbidden(f"Only SUPER_ADMIN can change: {', '.join(restricted)}")

        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()
            if not fields["name"]:
                raise ValidationError("Airline name cannot be empty")

        if "code" in fields:
            code = (fields["code"] or "").strip()
            if not code:
                raise ValidationError("Airline code cannot be empty")
            existing = self.db.get_airline_by_code(code)
            if existing and existing.id != airline_id:
                raise Conflict("Airline code already exists")

        if not fields:
            return self.db.get_airline(airline_id).to_dict()

        airline = self.db.update_airline(airline_id, **fields)
        logger.info(f"Airline {airline_id} updated by {identity.email}: {', '.join(sorted(fields))}")
        return airline.to_dict()

    def delete_airline(self, airline_id: str) -> None:
        if not self.db.get_airline(airline_id):
            raise NotFound("Airline not found")
        if self.db.count_users_for_airline(airline_id) > 0:
            raise Conflict("Cannot delete airline with existing users")

        self.db.delete_airline(airline_id)
        logger.info(f"Airline deleted: {airline_id}")

    def _set_active(self, airline_id: str, active: bool) -> Dict[str, Any]:
        airline = self.db.update_airline(airline_id, active=active)
        if not airline:
            raise NotFound("Airline not found")
        logger.info(f"Airline {airline.code} {'activated' if active else 'deactivated'}")
        return airline.to_dict()

    def activate_airline(self, airline_id: str) -> Dict[str, Any]:
        return self._set_active(airline_id, True)

    def deactivate_airline(self, airline_id: str) -> Dict[str, Any]:
        return self._set_active(airline_id, False)
