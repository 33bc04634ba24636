"""
Operations manual: chapters, sections and content items.

Chapters belong to an airline. Sections and contents reach their airline
through the parent chain (content -> section -> chapter -> airline); every
fetch by id resolves that chain and checks it against the caller. A missing
entity is reported before a tenant mismatch.
"""

import json
import logging
import sqlite3
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from auth import AuthContext, effective_airline_id, ensure_tenant_access
from database_manager import DatabaseManager, new_id, row_to_dict, utcnow
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


class ContentType(Enum):
    TEXT = "TEXT"
    MARKDOWN = "MARKDOWN"
    HTML = "HTML"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    PDF = "PDF"
    LINK = "LINK"


def parse_content_type(value: Any) -> ContentType:
    try:
        return ContentType(str(value or "").strip().upper())
    except ValueError:
        valid = ", ".join(t.value for t in ContentType)
        raise ValidationError(f"Invalid content type. Must be one of: {valid}")


def serialize_row(row: sqlite3.Row, json_fields: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """Row to API dict; the sort_order column is exposed as ``order``."""
    data = row_to_dict(row, json_fields=json_fields)
    if "sort_order" in data:
        data["order"] = data.pop("sort_order")
    return data


def next_order(conn: sqlite3.Connection, table: str, parent_column: str, parent_id: str) -> int:
    row = conn.execute(
        f"SELECT MAX(sort_order) FROM {table} WHERE {parent_column} = ?", (parent_id,)
    ).fetchone()
    return (row[0] or 0) + 1


def build_update(
    data: Dict[str, Any],
    allowed: Tuple[str, ...],
    json_fields: Tuple[str, ...] = (),
    check_title: bool = True
) -> Dict[str, Any]:
    """Column -> value map for the provided keys; ``order`` maps to sort_order."""
    values: Dict[str, Any] = {}
    for key in allowed:
        if key not in data:
            continue
        value = data[key]
        if key == "active":
            value = int(bool(value))
        elif key in json_fields:
            value = json.dumps(value) if value is not None else None
        elif key == "order":
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError("Order must be an integer")
        values["sort_order" if key == "order" else key] = value

    if check_title and "title" in values:
        if not isinstance(values["title"], str) or not values["title"].strip():
            raise ValidationError("Title cannot be empty")
        values["title"] = values["title"].strip()
    return values


class ManualService:
    """
    Usage:
        manual = ManualService(db)
        chapter = manual.create_chapter(identity, {"title": "Safety"})
        section = manual.create_section(identity, chapter["id"], {"title": "Evacuation"})
        manual.create_content(identity, section["id"], {
            "title": "Doors", "content_type": "markdown", "body": "# Doors",
        })
    """

    CHAPTER_FIELDS = ("title", "description", "order", "active")
    SECTION_FIELDS = ("title", "description", "order", "active")
    CONTENT_FIELDS = ("title", "content_type", "body", "order", "metadata", "active")

    def __init__(self, db: DatabaseManager):
        self.db = db

    # =========================================================================
    # PARENT CHAIN RESOLUTION
    # =========================================================================

    def _chapter_row(self, identity: AuthContext, chapter_id: str) -> sqlite3.Row:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM manual_chapters WHERE id = ?", (chapter_id,)).fetchone()
        if not row:
            raise NotFound("Chapter not found")
        ensure_tenant_access(identity, row["airline_id"], "chapter")
        return row

    def _section_row(self, identity: AuthContext, section_id: str) -> sqlite3.Row:
        with self.db.connection() as conn:
            row = conn.execute("""
                SELECT s.*, c.airline_id AS airline_id, c.title AS chapter_title
                FROM manual_sections s
                JOIN manual_chapters c ON c.id = s.chapter_id
                WHERE s.id = ?
            """, (section_id,)).fetchone()
        if not row:
            raise NotFound("Section not found")
        ensure_tenant_access(identity, row["airline_id"], "section")
        return row

    def _content_row(self, identity: AuthContext, content_id: str) -> sqlite3.Row:
        with self.db.connection() as conn:
            row = conn.execute("""
                SELECT m.*, s.chapter_id AS chapter_id, c.airline_id AS airline_id
                FROM manual_contents m
                JOIN manual_sections s ON s.id = m.section_id
                JOIN manual_chapters c ON c.id = s.chapter_id
                WHERE m.id = ?
            """, (content_id,)).fetchone()
        if not row:
            raise NotFound("Content not found")
        ensure_tenant_access(identity, row["airline_id"], "content")
        return row

    def _update(self, table: str, entity_id: str, values: Dict[str, Any]) -> None:
        if not values:
            return
        values["updated_at"] = utcnow().isoformat()
        assignments = ", ".join(f"{name} = ?" for name in values)
        with self.db.connection() as conn:
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*values.values(), entity_id))

    # =========================================================================
    # CHAPTERS
    # =========================================================================

    def list_chapters(
        self,
        identity: AuthContext,
        airline_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        """Chapters of the caller's airline (any airline for SUPER_ADMIN), by order."""
        scope = effective_airline_id(identity, airline_id)
        clauses, params = [], []
        if scope:
            clauses.append("c.airline_id = ?")
            params.append(scope)
        if not include_inactive:
            clauses.append("c.active = 1")

        query = """
            SELECT c.*,
                (SELECT COUNT(*) FROM manual_sections s WHERE s.chapter_id = c.id) AS section_count
            FROM manual_chapters c
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY c.sort_order, c.created_at"

        with self.db.connection() as conn:
            return [serialize_row(row) for row in conn.execute(query, params).fetchall()]

    def get_chapter(self, identity: AuthContext, chapter_id: str) -> Dict[str, Any]:
        """Chapter with its active sections."""
        chapter = serialize_row(self._chapter_row(identity, chapter_id))
        with self.db.connection() as conn:
            rows = conn.execute("""
                SELECT s.*,
                    (SELECT COUNT(*) FROM manual_contents m WHERE m.section_id = s.id) AS content_count
                FROM manual_sections s
                WHERE s.chapter_id = ? AND s.active = 1
                ORDER BY s.sort_order
            """, (chapter_id,)).fetchall()
        chapter["sections"] = [serialize_row(row) for row in rows]
        return chapter

    def create_chapter(self, identity: AuthContext, data: Dict[str, Any]) -> Dict[str, Any]:
        requested = data.get("airline_id")
        if identity.is_super_admin:
            if not requested:
                raise ValidationError("Airline ID is required for super admin")
            if not self.db.get_airline(requested):
                raise NotFound("Airline not found")
            airline_id = requested
        else:
            airline_id = effective_airline_id(identity, requested)

        values = build_update(data, self.CHAPTER_FIELDS)
        if not values.get("title"):
            raise ValidationError("Title is required")

        chapter_id = new_id()
        now = utcnow().isoformat()
        with self.db.connection() as conn:
            order = values.get("sort_order")
            if order is None:
                order = next_order(conn, "manual_chapters", "airline_id", airline_id)
            conn.execute("""
                INSERT INTO manual_chapters (id, airline_id, title, description, sort_order, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (chapter_id, airline_id, values["title"], values.get("description"), order,
                  values.get("active", 1), now, now))

        logger.info(f"Chapter {chapter_id} created for airline {airline_id} by {identity.email}")
        return serialize_row(self._chapter_row(identity, chapter_id))

    def update_chapter(self, identity: AuthContext, chapter_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._chapter_row(identity, chapter_id)
        self._update("manual_chapters", chapter_id, build_update(data, self.CHAPTER_FIELDS))
        return serialize_row(self._chapter_row(identity, chapter_id))

    def delete_chapter(self, identity: AuthContext, chapter_id: str) -> None:
        """Delete a chapter with all its sections and contents."""
        self._chapter_row(identity, chapter_id)
        with self.db.connection() as conn:
            conn.execute("DELETE FROM manual_chapters WHERE id = ?", (chapter_id,))
        logger.info(f"Chapter {chapter_id} deleted by {identity.email}")

    # =========================================================================
    # SECTIONS
    # =========================================================================

    def list_sections(
        self,
        identity: AuthContext,
        chapter_id: str,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        self._chapter_row(identity, chapter_id)

        query = """
            SELECT s.*,
                (SELECT COUNT(*) FROM manual_contents m WHERE m.section_id = s.id) AS content_count
            FROM manual_sections s
            WHERE s.chapter_id = ?
        """
        if not include_inactive:
            query += " AND s.active = 1"
        query += " ORDER BY s.sort_order"

        with self.db.connection() as conn:
            return [serialize_row(row) for row in conn.execute(query, (chapter_id,)).fetchall()]

    def get_section(self, identity: AuthContext, section_id: str) -> Dict[str, Any]:
        """Section with its chapter summary and active contents."""
        row = self._section_row(identity, section_id)
        section = serialize_row(row)
        section["chapter"] = {
            "id": section["chapter_id"],
            "title": section.pop("chapter_title"),
            "airline_id": section.pop("airline_id"),
        }
        with self.db.connection() as conn:
            rows = conn.execute("""
                SELECT * FROM manual_contents
                WHERE section_id = ? AND active = 1
                ORDER BY sort_order
            """, (section_id,)).fetchall()
        section["contents"] = [serialize_row(r, ("metadata",)) for r in rows]
        return section

    def create_section(self, identity: AuthContext, chapter_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not chapter_id:
            raise ValidationError("Chapter ID is required")
        values = build_update(data, self.SECTION_FIELDS)
        if not values.get("title"):
            raise ValidationError("Title is required")
        self._chapter_row(identity, chapter_id)

        section_id = new_id()
        now = utcnow().isoformat()
        with self.db.connection() as conn:
            order = values.get("sort_order")
            if order is None:
                order = next_order(conn, "manual_sections", "chapter_id", chapter_id)
            conn.execute("""
                INSERT INTO manual_sections (id, chapter_id, title, description, sort_order, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (section_id, chapter_id, values["title"], values.get("description"), order,
                  values.get("active", 1), now, now))

        logger.info(f"Section {section_id} created in chapter {chapter_id} by {identity.email}")
        return self.get_section(identity, section_id)

    def update_section(self, identity: AuthContext, section_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._section_row(identity, section_id)
        self._update("manual_sections", section_id, build_update(data, self.SECTION_FIELDS))
        return self.get_section(identity, section_id)

    def delete_section(self, identity: AuthContext, section_id: str) -> None:
        self._section_row(identity, section_id)
        with self.db.connection() as conn:
            conn.execute("DELETE FROM manual_sections WHERE id = ?", (section_id,))
        logger.info(f"Section {section_id} deleted by {identity.email}")

    # =========================================================================
    # CONTENTS
    # =========================================================================

    def list_contents(
        self,
        identity: AuthContext,
        section_id: str,
        include_inactive: bool = False
    ) -> List[Dict[str, Any]]:
        self._section_row(identity, section_id)

        query = "SELECT * FROM manual_contents WHERE section_id = ?"
        if not include_inactive:
            query += " AND active = 1"
        query += " ORDER BY sort_order"

        with self.db.connection() as conn:
            return [serialize_row(row, ("metadata",)) for row in conn.execute(query, (section_id,)).fetchall()]

    def get_content(self, identity: AuthContext, content_id: str) -> Dict[str, Any]:
        content = serialize_row(self._content_row(identity, content_id), ("metadata",))
        content.pop("airline_id", None)
        return content

    def create_content(self, identity: AuthContext, section_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not section_id:
            raise ValidationError("Section ID is required")
        values = build_update(data, self.CONTENT_FIELDS, json_fields=("metadata",))
        if not values.get("title"):
            raise ValidationError("Title is required")
        if not data.get("content_type"):
            raise ValidationError("Content type is required")
        content_type = parse_content_type(data["content_type"])
        body = values.get("body")
        if not isinstance(body, str):
            raise ValidationError("Content body is required")
        self._section_row(identity, section_id)

        content_id = new_id()
        now = utcnow().isoformat()
        with self.db.connection() as conn:
            order = values.get("sort_order")
            if order is None:
                order = next_order(conn, "manual_contents", "section_id", section_id)
            conn.execute("""
                INSERT INTO manual_contents (id, section_id, title, body, content_type, sort_order,
                                             metadata, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (content_id, section_id, values["title"], body, content_type.value, order,
                  values.get("metadata"), values.get("active", 1), now, now))

        logger.info(f"Content {content_id} ({content_type.value}) created in section {section_id}")
        return self.get_content(identity, content_id)

    def update_content(self, identity: AuthContext, content_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._content_row(identity, content_id)
        values = build_update(data, self.CONTENT_FIELDS, json_fields=("metadata",))
        if "content_type" in values:
            values["content_type"] = parse_content_type(values["content_type"]).value
        if "body" in values and not isinstance(values["body"], str):
            raise ValidationError("Content body must be text")
        self._update("manual_contents", content_id, values)
        return self.get_content(identity, content_id)

    def delete_content(self, identity: AuthContext, content_id: str) -> None:
        self._content_row(identity, content_id)
        with self.db.connection() as conn:
            conn.execute("DELETE FROM manual_contents WHERE id = ?", (content_id,))
        logger.info(f"Content {content_id} deleted by {identity.email}")
