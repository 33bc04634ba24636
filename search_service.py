"""
Free-text search across the operations manual.

Matches are case-insensitive substring matches on titles, descriptions and
content bodies. Content text goes through placeholder substitution before
matching, so readers find what they actually see on screen.

Ordering: relevance (3 = title hit, 2 = description/body hit) descending,
then manual order ascending.
"""

import logging
from typing import Any, Dict, List, Optional

from auth import AuthContext, ensure_tenant_access
from database_manager import DatabaseManager
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

EXCERPT_CONTEXT = 150
DEFAULT_LIMIT = 50


def replace_placeholders(text: Optional[str], airline_name: Optional[str] = None) -> Optional[str]:
    """Expand {{CONTACT_BUTTON}} and {{name}} the way the reader app renders them."""
    if not text:
        return text
    text = text.replace("{{CONTACT_BUTTON}}", "contact page")
    if airline_name:
        text = text.replace("{{name}}", airline_name)
    return text


def content_excerpt(text: str, term: str, context_length: int = EXCERPT_CONTEXT) -> str:
    """Window of ``context_length`` characters around the first hit, with ellipses."""
    index = text.lower().find(term.lower())
    if index == -1:
        return text[:context_length] + "..."

    half = context_length // 2
    start = max(0, index - half)
    end = min(len(text), index + len(term) + half)

    excerpt = text[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(text):
        excerpt = excerpt + "..."
    return excerpt


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _contains(text: Optional[str], term: str) -> bool:
    return bool(text) and term.lower() in text.lower()


def _sort(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(results, key=lambda r: (-r["relevance"], r["order"]))


class SearchService:
    """
    Usage:
        search = SearchService(db)
        hits = search.global_search(identity, "evacuation")
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _require_query(self, query: Any) -> str:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query is required")
        return query.strip()

    def _chapter_hits(self, conn, term: str, where: str, params: list) -> List[Dict[str, Any]]:
        rows = conn.execute(f"""
            SELECT c.* FROM manual_chapters c
            WHERE {where}
              AND (c.title LIKE ? ESCAPE '\\' OR c.description LIKE ? ESCAPE '\\')
            ORDER BY c.sort_order
        """, (*params, _like(term), _like(term))).fetchall()

        return [{
            "type": "chapter",
            "id": row["id"],
            "title": row["title"],
            "description": row["description"],
            "chapter_id": row["id"],
            "chapter_title": row["title"],
            "order": row["sort_order"],
            "relevance": 3 if _contains(row["title"], term) else 2,
        } for row in rows]

    def _section_hits(self, conn, term: str, where: str, params: list) -> List[Dict[str, Any]]:
        rows = conn.execute(f"""
            SELECT s.*, c.title AS chapter_title
            FROM manual_sections s
            JOIN manual_chapters c ON c.id = s.chapter_id
            WHERE {where}
              AND (s.title LIKE ? ESCAPE '\\' OR s.description LIKE ? ESCAPE '\\')
            ORDER BY s.sort_order
        """, (*params, _like(term), _like(term))).fetchall()

        return [{
            "type": "section",
            "id": row["id"],
            "title": row["title"],
            "description": row["description"],
            "chapter_id": row["chapter_id"],
            "chapter_title": row["chapter_title"],
            "section_id": row["id"],
            "section_title": row["title"],
            "order": row["sort_order"],
            "relevance": 3 if _contains(row["title"], term) else 2,
        } for row in rows]

    def _content_hits(self, conn, term: str, where: str, params: list) -> List[Dict[str, Any]]:
        # Placeholders expand per airline, so filtering happens here rather than in SQL
        rows = conn.execute(f"""
            SELECT m.*, s.title AS section_title, c.id AS chapter_id,
                   c.title AS chapter_title, a.name AS airline_name
            FROM manual_contents m
            JOIN manual_sections s ON s.id = m.section_id
            JOIN manual_chapters c ON c.id = s.chapter_id
            JOIN airlines a ON a.id = c.airline_id
            WHERE {where}
            ORDER BY m.sort_order
        """, params).fetchall()

        results = []
        for row in rows:
            title = replace_placeholders(row["title"], row["airline_name"])
            body = replace_placeholders(row["body"], row["airline_name"]) or ""
            title_match = _contains(title, term)
            if not title_match and not _contains(body, term):
                continue
            results.append({
                "type": "content",
                "id": row["id"],
                "title": title,
                "content": content_excerpt(body, term),
                "chapter_id": row["chapter_id"],
                "chapter_title": row["chapter_title"],
                "section_id": row["section_id"],
                "section_title": row["section_title"],
                "order": row["sort_order"],
                "relevance": 3 if title_match else 2,
            })
        return results

    def global_search(
        self,
        identity: AuthContext,
        query: str,
        include_inactive: bool = False,
        limit: int = DEFAULT_LIMIT
    ) -> List[Dict[str, Any]]:
        """
        Search chapters, sections and contents visible to the caller.

        SUPER_ADMIN searches every airline; everyone else only their own.
        """
        term = self._require_query(query)

        clauses, params = ["1 = 1"], []
        if not identity.is_super_admin:
            ensure_tenant_access(identity, identity.airline_id, "manual")
            clauses.append("c.airline_id = ?")
            params.append(identity.airline_id)
        if not include_inactive:
            clauses.append("c.active = 1")

        chapter_where = " AND ".join(clauses)
        section_where = chapter_where + ("" if include_inactive else " AND s.active = 1")
        content_where = section_where + ("" if include_inactive else " AND m.active = 1")

        with self.db.connection() as conn:
            results = (
                self._chapter_hits(conn, term, chapter_where, params)
                + self._section_hits(conn, term, section_where, params)
                + self._content_hits(conn, term, content_where, params)
            )

        logger.info(f"Search '{term}' by {identity.email}: {len(results)} hits")
        return _sort(results)[:limit]

    def search_in_chapter(self, identity: AuthContext, chapter_id: str, query: str) -> List[Dict[str, Any]]:
        """Search the active sections and contents of one chapter."""
        term = self._require_query(query)

        with self.db.connection() as conn:
            chapter = conn.execute(
                "SELECT id, airline_id FROM manual_chapters WHERE id = ?", (chapter_id,)
            ).fetchone()
            if not chapter:
                raise NotFound("Chapter not found")
            ensure_tenant_access(identity, chapter["airline_id"], "chapter")

            section_where = "s.chapter_id = ? AND s.active = 1"
            results = (
                self._section_hits(conn, term, section_where, [chapter_id])
                + self._content_hits(conn, term, section_where + " AND m.active = 1", [chapter_id])
            )

        return _sort(results)
