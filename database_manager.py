"""
Database Manager for the Airline Manual Admin backend

Single SQLite store shared by every component. DatabaseManager owns the
schema and the identity tables (airlines, users, refresh tokens); the
resource services run their own queries through ``connection()``.

Multi-Tenancy:
    Airlines are the tenant root. Users (except SUPER_ADMIN), manual
    chapters and contact groups carry an airline_id; sections, contents
    and contacts reach their airline through their parent chain.

Schema:
    airlines:         tenants (unique code)
    users:            accounts, role, optional airline, reset token digest
    refresh_tokens:   persisted refresh JWTs, revocable per row
    manual_chapters:  top of the manual hierarchy, per airline
    manual_sections:  children of chapters
    manual_contents:  children of sections
    contact_groups:   contact directory groups, per airline
    contacts:         directory entries inside a group

Every call opens its own connection and commits or rolls back as one
transaction, so there is no shared connection state between requests.
"""

import json
import sqlite3
import logging
import secrets
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from contextlib import contextmanager

from errors import Conflict, ValidationError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return secrets.token_urlsafe(16)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def row_to_dict(
    row: sqlite3.Row,
    json_fields: Iterable[str] = (),
    bool_fields: Iterable[str] = ("active",)
) -> Dict[str, Any]:
    """Convert a row to a plain dict, decoding JSON and boolean columns."""
    data = dict(row)
    for name in json_fields:
        if name in data:
            data[name] = json.loads(data[name]) if data[name] else None
    for name in bool_fields:
        if name in data and data[name] is not None:
            data[name] = bool(data[name])
    return data


# =============================================================================
# ENUMS AND DATA CLASSES
# =============================================================================

class UserRole(Enum):
    """Account roles, most privileged first."""
    SUPER_ADMIN = "SUPER_ADMIN"   # Global, no airline
    ADMIN = "ADMIN"               # Manages users of one airline
    EDITOR = "EDITOR"             # Edits the manual and contacts
    VIEWER = "VIEWER"             # Read-only


@dataclass
class Airline:
    """Tenant record."""
    id: str
    code: str
    name: str
    logo: Optional[str] = None
    branding: Optional[Dict[str, Any]] = None
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_count: Optional[int] = None
    chapter_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "logo": self.logo,
            "branding": self.branding,
            "active": self.active,
            "created_at": _to_iso(self.created_at),
            "updated_at": _to_iso(self.updated_at),
        }
        if self.user_count is not None:
            data["user_count"] = self.user_count
        if self.chapter_count is not None:
            data["chapter_count"] = self.chapter_count
        return data


@dataclass
class User:
    """User account representation."""
    id: str
    email: str
    password_hash: str
    role: UserRole
    airline_id: Optional[str]
    first_name: str = ""
    last_name: str = ""
    active: bool = True
    reset_token_hash: Optional[str] = None
    reset_token_expires_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding credentials and reset state)."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
            "airline_id": self.airline_id,
            "active": self.active,
            "last_login": _to_iso(self.last_login),
            "created_at": _to_iso(self.created_at),
            "updated_at": _to_iso(self.updated_at),
        }


@dataclass
class RefreshTokenRecord:
    """Server-side row backing an issued refresh token."""
    token: str
    user_id: str
    expires_at: datetime
    created_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utcnow())


def check_role_airline(role: UserRole, airline_id: Optional[str]) -> None:
    """SUPER_ADMIN has no airline; every other role has exactly one."""
    if role == UserRole.SUPER_ADMIN and airline_id:
        raise ValidationError("SUPER_ADMIN cannot be associated with an airline")
    if role != UserRole.SUPER_ADMIN and not airline_id:
        raise ValidationError("Airline is required for non-SUPER_ADMIN users")


# =============================================================================
# DATABASE MANAGER
# =============================================================================

class DatabaseManager:
    """
    SQLite-backed persistence handle.

    Constructed once at process startup and passed to every component;
    nothing in the codebase reaches for a module-level connection.

    Usage:
        db = DatabaseManager("data/manuals.db")
        db.initialize()

        airline = db.create_airline("American Airlines", "AA")
        user = db.create_user("admin@aa.com", password_hash, UserRole.ADMIN,
                              airline.id, first_name="Ann", last_name="Lee")
    """

    SCHEMA_VERSION = 1

    USER_UPDATABLE_FIELDS = {"email", "first_name", "last_name", "role", "airline_id", "active"}
    AIRLINE_UPDATABLE_FIELDS = {"name", "code", "logo", "branding", "active"}

    def __init__(self, db_path: str = "data/manuals.db"):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"DatabaseManager initialized: {self.db_path}")

    @contextmanager
    def connection(self):
        """One connection, one transaction."""
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create database schema if not exists."""
        with self.connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS airlines (
                    id TEXT PRIMARY KEY,
                    code TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    logo TEXT,
                    branding TEXT,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    first_name TEXT DEFAULT '',
                    last_name TEXT DEFAULT '',
                    role TEXT NOT NULL,
                    active INTEGER DEFAULT 1,
                    airline_id TEXT REFERENCES airlines(id),
                    reset_token_hash TEXT UNIQUE,
                    reset_token_expires_at TIMESTAMP,
                    last_login TIMESTAMP,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP,
                    CHECK ((role = 'SUPER_ADMIN' AND airline_id IS NULL)
                        OR (role != 'SUPER_ADMIN' AND airline_id IS NOT NULL))
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_airline ON users(airline_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    expires_at TIMESTAMP NOT NULL,
                    created_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user ON refresh_tokens(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_refresh_tokens_expires ON refresh_tokens(expires_at)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS manual_chapters (
                    id TEXT PRIMARY KEY,
                    airline_id TEXT NOT NULL REFERENCES airlines(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 1,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_chapters_airline ON manual_chapters(airline_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS manual_sections (
                    id TEXT PRIMARY KEY,
                    chapter_id TEXT NOT NULL REFERENCES manual_chapters(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 1,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sections_chapter ON manual_sections(chapter_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS manual_contents (
                    id TEXT PRIMARY KEY,
                    section_id TEXT NOT NULL REFERENCES manual_sections(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    body TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 1,
                    metadata TEXT,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_contents_section ON manual_contents(section_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS contact_groups (
                    id TEXT PRIMARY KEY,
                    airline_id TEXT NOT NULL REFERENCES airlines(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    description TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 1,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_groups_airline ON contact_groups(airline_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS contacts (
                    id TEXT PRIMARY KEY,
                    group_id TEXT NOT NULL REFERENCES contact_groups(id) ON DELETE CASCADE,
                    airline_id TEXT NOT NULL REFERENCES airlines(id) ON DELETE CASCADE,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    title TEXT,
                    company TEXT,
                    phone TEXT,
                    email TEXT,
                    timezone TEXT,
                    avatar TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 1,
                    metadata TEXT,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_contacts_group ON contacts(group_id)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_info (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            cursor.execute("""
                INSERT OR REPLACE INTO schema_info (key, value)
                VALUES ('version', ?)
            """, (str(self.SCHEMA_VERSION),))

            logger.info("Database schema initialized")

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _row_to_airline(self, row: sqlite3.Row) -> Airline:
        keys = row.keys()
        return Airline(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            logo=row["logo"],
            branding=json.loads(row["branding"]) if row["branding"] else None,
            active=bool(row["active"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            user_count=row["user_count"] if "user_count" in keys else None,
            chapter_count=row["chapter_count"] if "chapter_count" in keys else None,
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            role=UserRole(row["role"]),
            airline_id=row["airline_id"],
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            active=bool(row["active"]),
            reset_token_hash=row["reset_token_hash"],
            reset_token_expires_at=_parse_ts(row["reset_token_expires_at"]),
            last_login=_parse_ts(row["last_login"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # =========================================================================
    # AIRLINES
    # =========================================================================

    _AIRLINE_WITH_COUNTS = """
        SELECT a.*,
            (SELECT COUNT(*) FROM users u WHERE u.airline_id = a.id) AS user_count,
            (SELECT COUNT(*) FROM manual_chapters c WHERE c.airline_id = a.id) AS chapter_count
        FROM airlines a
    """

    def create_airline(
        self,
        name: str,
        code: str,
        logo: Optional[str] = None,
        branding: Optional[Dict[str, Any]] = None,
        active: bool = True
    ) -> Airline:
        """Insert an airline. Code is stored upper-case and must be unique."""
        now = utcnow()
        airline = Airline(
            id=new_id(),
            code=code.strip().upper(),
            name=name.strip(),
            logo=logo,
            branding=branding,
            active=active,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.connection() as conn:
                conn.execute("""
                    INSERT INTO airlines (id, code, name, logo, branding, active, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (airline.id, airline.code, airline.name, logo,
                      json.dumps(branding) if branding is not None else None,
                      int(active), now.isoformat(), now.isoformat()))
        except sqlite3.IntegrityError:
            raise Conflict("Airline code already exists")

        logger.info(f"Created airline {airline.code} ({airline.id})")
        return airline

    def get_airline(self, airline_id: str) -> Optional[Airline]:
        with self.connection() as conn:
            row = conn.execute(
                self._AIRLINE_WITH_COUNTS + " WHERE a.id = ?", (airline_id,)
            ).fetchone()
            return self._row_to_airline(row) if row else None

    def get_airline_by_code(self, code: str) -> Optional[Airline]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM airlines WHERE code = ?", (code.strip().upper(),)
            ).fetchone()
            return self._row_to_airline(row) if row else None

    def list_airlines(self, include_inactive: bool = False) -> List[Airline]:
        query = self._AIRLINE_WITH_COUNTS
        if not include_inactive:
            query += " WHERE a.active = 1"
        query += " ORDER BY a.name"
        with self.connection() as conn:
            return [self._row_to_airline(row) for row in conn.execute(query).fetchall()]

    def update_airline(self, airline_id: str, **fields: Any) -> Optional[Airline]:
        """Update the given airline columns. Returns None if the airline is absent."""
        unknown = set(fields) - self.AIRLINE_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown airline fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        if "code" in values:
            values["code"] = values["code"].strip().upper()
        if "branding" in values:
            values["branding"] = json.dumps(values["branding"]) if values["branding"] is not None else None
        if "active" in values:
            values["active"] = int(bool(values["active"]))
        values["updated_at"] = utcnow().isoformat()

        assignments = ", ".join(f"{name} = ?" for name in values)
        try:
            with self.connection() as conn:
                result = conn.execute(
                    f"UPDATE airlines SET {assignments} WHERE id = ?",
                    (*values.values(), airline_id)
                )
                if result.rowcount == 0:
                    return None
        except sqlite3.IntegrityError:
            raise Conflict("Airline code already exists")

        return self.get_airline(airline_id)

    def delete_airline(self, airline_id: str) -> bool:
        """Delete an airline and, by cascade, its manual and contacts."""
        with self.connection() as conn:
            result = conn.execute("DELETE FROM airlines WHERE id = ?", (airline_id,))
            return result.rowcount > 0

    def count_users_for_airline(self, airline_id: str) -> int:
        with self.connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM users WHERE airline_id = ?", (airline_id,)
            ).fetchone()[0]

    # =========================================================================
    # USERS
    # =========================================================================

    def create_user(
        self,
        email: str,
        password_hash: str,
        role: UserRole,
        airline_id: Optional[str],
        first_name: str = "",
        last_name: str = "",
        active: bool = True
    ) -> User:
        """
        Insert a user row.

        Raises:
            ValidationError: role/airline combination is invalid
            Conflict: email already exists
        """
        check_role_airline(role, airline_id)

        now = utcnow()
        user = User(
            id=new_id(),
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            airline_id=airline_id,
            first_name=first_name,
            last_name=last_name,
            active=active,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.connection() as conn:
                conn.execute("""
                    INSERT INTO users (id, email, password_hash, first_name, last_name, role,
                                       active, airline_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (user.id, user.email, password_hash, first_name, last_name, role.value,
                      int(active), airline_id, now.isoformat(), now.isoformat()))
        except sqlite3.IntegrityError:
            raise Conflict("Email already exists")

        logger.info(f"Created user: {user.email} with role {role.value}")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_reset_token_hash(self, token_hash: str) -> Optional[User]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE reset_token_hash = ?", (token_hash,)
            ).fetchone()
            return self._row_to_user(row) if row else None

    def list_users(
        self,
        airline_id: Optional[str] = None,
        include_inactive: bool = False,
        limit: int = 500
    ) -> List[User]:
        """List users, newest first, optionally limited to one airline."""
        clauses, params = [], []
        if airline_id:
            clauses.append("airline_id = ?")
            params.append(airline_id)
        if not include_inactive:
            clauses.append("active = 1")

        query = "SELECT * FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            return [self._row_to_user(row) for row in conn.execute(query, params).fetchall()]

    def update_user(self, user_id: str, **fields: Any) -> Optional[User]:
        """
        Update profile, role, airline or active flag.

        The resulting role/airline pair is checked before writing.
        Passwords go through set_password() so sessions get revoked.
        """
        unknown = set(fields) - self.USER_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {', '.join(sorted(unknown))}")

        current = self.get_user(user_id)
        if not current:
            return None

        values = dict(fields)
        if "role" in values and isinstance(values["role"], UserRole):
            values["role"] = values["role"].value
        if "email" in values:
            values["email"] = values["email"].strip().lower()
        if "active" in values:
            values["active"] = int(bool(values["active"]))

        check_role_airline(
            UserRole(values.get("role", current.role.value)),
            values.get("airline_id", current.airline_id)
        )
        values["updated_at"] = utcnow().isoformat()

        assignments = ", ".join(f"{name} = ?" for name in values)
        try:
            with self.connection() as conn:
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    (*values.values(), user_id)
                )
        except sqlite3.IntegrityError:
            raise Conflict("Email already exists")

        return self.get_user(user_id)

    def touch_last_login(self, user_id: str, when: Optional[datetime] = None) -> None:
        with self.connection() as conn:
            conn.execute(
                "UPDATE users SET last_login = ? WHERE id = ?",
                ((when or utcnow()).isoformat(), user_id)
            )

    def set_password(self, user_id: str, password_hash: str, revoke_sessions: bool = True) -> int:
        """
        Store a new password hash.

        Returns:
            Number of refresh tokens revoked alongside the change
        """
        with self.connection() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, utcnow().isoformat(), user_id)
            )
            if not revoke_sessions:
                return 0
            result = conn.execute("DELETE FROM refresh_tokens WHERE user_id = ?", (user_id,))
            return result.rowcount

    # =========================================================================
    # PASSWORD RESET TOKENS
    # =========================================================================

    def set_reset_token(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        """Store the reset token digest, replacing any earlier one."""
        with self.connection() as conn:
            conn.execute("""
                UPDATE users SET reset_token_hash = ?, reset_token_expires_at = ?
                WHERE id = ?
            """, (token_hash, expires_at.isoformat(), user_id))

    def consume_reset_token(self, user_id: str, token_hash: str, password_hash: str) -> bool:
        """
        Apply a password reset in one transaction.

        The update only matches while the digest is still on the row, so two
        concurrent resets with the same token cannot both succeed. On success
        the token is cleared and every refresh token of the user is deleted.

        Returns:
            True if the token was consumed
        """
        with self.connection() as conn:
            result = conn.execute("""
                UPDATE users
                SET password_hash = ?,
                    reset_token_hash = NULL,
                    reset_token_expires_at = NULL,
                    updated_at = ?
                WHERE id = ? AND reset_token_hash = ?
            """, (password_hash, utcnow().isoformat(), user_id, token_hash))
            if result.rowcount == 0:
                return False
            revoked = conn.execute(
                "DELETE FROM refresh_tokens WHERE user_id = ?", (user_id,)
            ).rowcount

        logger.info(f"Password reset applied for user {user_id}, {revoked} refresh tokens revoked")
        return True

    # =========================================================================
    # REFRESH TOKENS
    # =========================================================================

    def store_refresh_token(self, token: str, user_id: str, expires_at: datetime) -> RefreshTokenRecord:
        record = RefreshTokenRecord(token=token, user_id=user_id, expires_at=expires_at, created_at=utcnow())
        with self.connection() as conn:
            conn.execute("""
                INSERT INTO refresh_tokens (token, user_id, expires_at, created_at)
                VALUES (?, ?, ?, ?)
            """, (token, user_id, expires_at.isoformat(), record.created_at.isoformat()))
        return record

    def get_refresh_token(self, token: str) -> Optional[Tuple[RefreshTokenRecord, User]]:
        """
        Fetch a refresh token row together with its owner.

        One SELECT, so the row and the user state come from the same snapshot.
        """
        with self.connection() as conn:
            row = conn.execute("""
                SELECT u.*,
                       t.token AS rt_token,
                       t.expires_at AS rt_expires_at,
                       t.created_at AS rt_created_at
                FROM refresh_tokens t
                JOIN users u ON u.id = t.user_id
                WHERE t.token = ?
            """, (token,)).fetchone()

            if not row:
                return None

            record = RefreshTokenRecord(
                token=row["rt_token"],
                user_id=row["id"],
                expires_at=_parse_ts(row["rt_expires_at"]),
                created_at=_parse_ts(row["rt_created_at"]),
            )
            return record, self._row_to_user(row)

    def delete_refresh_token(self, token: str) -> bool:
        with self.connection() as conn:
            result = conn.execute("DELETE FROM refresh_tokens WHERE token = ?", (token,))
            return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: str) -> int:
        with self.connection() as conn:
            result = conn.execute("DELETE FROM refresh_tokens WHERE user_id = ?", (user_id,))
            return result.rowcount

    def count_refresh_tokens(self, user_id: str) -> int:
        with self.connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM refresh_tokens WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    def purge_expired_refresh_tokens(self) -> int:
        """Remove refresh token rows whose expiry has passed."""
        with self.connection() as conn:
            result = conn.execute(
                "DELETE FROM refresh_tokens WHERE expires_at < ?",
                (utcnow().isoformat(),)
            )
            if result.rowcount:
                logger.info(f"Purged {result.rowcount} expired refresh tokens")
            return result.rowcount
