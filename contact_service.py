"""
Contact directory: groups of contacts per airline.

A contact carries a copy of its group's airline_id so directory queries
can be tenant-filtered without a join.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from auth import AuthContext, effective_airline_id, ensure_tenant_access
from database_manager import DatabaseManager, new_id, utcnow
from errors import NotFound, ValidationError
from manual_service import build_update, next_order, serialize_row

logger = logging.getLogger(__name__)


def _check_name(values: Dict[str, Any], key: str, label: str, required: bool) -> None:
    if key not in values:
        if required:
            raise ValidationError(f"{label} is required")
        return
    value = values[key]
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} {'is required' if required else 'cannot be empty'}")
    values[key] = value.strip()


class ContactService:
    """
    Usage:
        contacts = ContactService(db)
        group = contacts.create_group(identity, {"name": "Dispatch"})
        contacts.create_contact(identity, {
            "group_id": group["id"], "first_name": "Dana", "last_name": "Ops",
        })
    """

    GROUP_FIELDS = ("name", "description", "order", "active")
    CONTACT_FIELDS = (
        "first_name", "last_name", "title", "company", "phone", "email",
        "timezone", "avatar", "order", "metadata", "active",
    )

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _group_row(self, identity: AuthContext, group_id: str) -> sqlite3.Row:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM contact_groups WHERE id = ?", (group_id,)).fetchone()
        if not row:
            raise NotFound("Contact group not found")
        ensure_tenant_access(identity, row["airline_id"], "contact group")
        return row

    def _contact_row(self, identity: AuthContext, contact_id: str) -> sqlite3.Row:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
        if not row:
            raise NotFound("Contact not found")
        ensure_tenant_access(identity, row["airline_id"], "contact")
        return row

    def _contacts_of(self, group_id: str, include_inactive: bool) -> List[Dict[str, Any]]:
        query = "SELECT * FROM contacts WHERE group_id = ?"
        if not include_inactive:
            query += " AND active = 1"
        query += " ORDER BY sort_order"
        with self.db.connection() as conn:
            return [serialize_row(row, ("metadata",)) for row in conn.execute(query, (group_id,)).fetchall()]

    def _update(self, table: str, entity_id: str, values: Dict[str, Any]) -> None:
        if not values:
            return
        values["updated_at"] = utcnow().isoformat()
        assignments = ", ".join(f"{name} = ?" for name in values)
        with self.db.connection() as conn:
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*values.values(), entity_id))

    # =========================================================================
    # GROUPS
    # =========================================================================

    def list_groups(
        self,
        identity: AuthContext,
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        """Groups with their contacts, by order."""
        scope = effective_airline_id(identity, airline_id)
        clauses, params = [], []
        if scope:
            clauses.append("airline_id = ?")
            params.append(scope)
        if not include_inactive:
            clauses.append("active = 1")

        query = "SELECT * FROM contact_groups"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY sort_order"

        with self.db.connection() as conn:
            groups = [serialize_row(row) for row in conn.execute(query, params).fetchall()]
        for group in groups:
            group["contacts"] = self._contacts_of(group["id"], include_inactive)
        return groups

    def get_group(self, identity: AuthContext, group_id: str) -> Dict[str, Any]:
        group = serialize_row(self._group_row(identity, group_id))
        group["contacts"] = self._contacts_of(group_id, include_inactive=True)
        return group

    def create_group(self, identity: AuthContext, data: Dict[str, Any]) -> Dict[str, Any]:
        values = build_update(data, self.GROUP_FIELDS)
        _check_name(values, "name", "Name", required=True)

        requested = data.get("airline_id")
        if identity.is_super_admin:
            if not requested:
                raise ValidationError("Airline ID is required for super admin")
            if not self.db.get_airline(requested):
                raise NotFound("Airline not found")
            airline_id = requested
        else:
            airline_id = effective_airline_id(identity, requested)

        group_id = new_id()
        now = utcnow().isoformat()
        with self.db.connection() as conn:
            order = values.get("sort_order")
            if order is None:
                order = next_order(conn, "contact_groups", "airline_id", airline_id)
            conn.execute("""
                INSERT INTO contact_groups (id, airline_id, name, description, sort_order, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (group_id, airline_id, values["name"], values.get("description"), order,
                  values.get("active", 1), now, now))

        logger.info(f"Contact group {group_id} created for airline {airline_id} by {identity.email}")
        return self.get_group(identity, group_id)

    def update_group(self, identity: AuthContext, group_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._group_row(identity, group_id)
        values = build_update(data, self.GROUP_FIELDS)
        _check_name(values, "name", "Name", required=False)
        self._update("contact_groups", group_id, values)
        return self.get_group(identity, group_id)

    def delete_group(self, identity: AuthContext, group_id: str) -> None:
        self._group_row(identity, group_id)
        with self.db.connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM contacts WHERE group_id = ?", (group_id,)).fetchone()[0]
            if count:
                raise ValidationError("Cannot delete contact group with existing contacts")
            conn.execute("DELETE FROM contact_groups WHERE id = ?", (group_id,))
        logger.info(f"Contact group {group_id} deleted by {identity.email}")

    # =========================================================================
    # CONTACTS
    # =========================================================================

    def list_contacts(
        self,
        identity: AuthContext,
        group_id: str,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        self._group_row(identity, group_id)
        return self._contacts_of(group_id, include_inactive)

    def get_contact(self, identity: AuthContext, contact_id: str) -> Dict[str, Any]:
        return serialize_row(self._contact_row(identity, contact_id), ("metadata",))

    def create_contact(self, identity: AuthContext, data: Dict[str, Any]) -> Dict[str, Any]:
        values = build_update(data, self.CONTACT_FIELDS, json_fields=("metadata",), check_title=False)
        _check_name(values, "first_name", "First name", required=True)
        _check_name(values, "last_name", "Last name", required=True)

        group_id = data.get("group_id")
        if not group_id:
            raise ValidationError("Group ID is required")
        group = self._group_row(identity, group_id)

        contact_id = new_id()
        now = utcnow().isoformat()
        with self.db.connection() as conn:
            order = values.get("sort_order")
            if order is None:
                order = next_order(conn, "contacts", "group_id", group_id)
            conn.execute("""
                INSERT INTO contacts (id, group_id, airline_id, first_name, last_name, title, company,
                                      phone, email, timezone, avatar, sort_order, metadata, active,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (contact_id, group_id, group["airline_id"], values["first_name"], values["last_name"],
                  values.get("title"), values.get("company"), values.get("phone"), values.get("email"),
                  values.get("timezone"), values.get("avatar"), order, values.get("metadata"),
                  values.get("active", 1), now, now))

        logger.info(f"Contact {contact_id} created in group {group_id} by {identity.email}")
        return self.get_contact(identity, contact_id)

    def update_contact(self, identity: AuthContext, contact_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._contact_row(identity, contact_id)
        values = build_update(data, self.CONTACT_FIELDS, json_fields=("metadata",), check_title=False)
        _check_name(values, "first_name", "First name", required=False)
        _check_name(values, "last_name", "Last name", required=False)
        self._update("contacts", contact_id, values)
        return self.get_contact(identity, contact_id)

    def delete_contact(self, identity: AuthContext, contact_id: str) -> None:
        self._contact_row(identity, contact_id)
        with self.db.connection() as conn:
            conn.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        logger.info(f"Contact {contact_id} deleted by {identity.email}")
