"""
Demo data for local development.

Creates two airlines, one user per role and a sample safety chapter for
American Airlines. Safe to run repeatedly: existing airline codes and
emails are left untouched, and the sample chapter is only created for an
airline that has none.

Usage:
    python seed.py -d data/manuals.db
"""

import argparse
import logging
from typing import Any, Dict

from auth import AuthContext, PasswordManager
from database_manager import DatabaseManager, UserRole
from manual_service import ManualService

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "Admin123!"

AIRLINES = [
    {
        "name": "American Airlines",
        "code": "AA",
        "logo": "https://example.com/aa-logo.png",
        "branding": {"primaryColor": "#0078D2", "secondaryColor": "#C8102E"},
    },
    {
        "name": "Delta Air Lines",
        "code": "DL",
        "logo": "https://example.com/delta-logo.png",
        "branding": {"primaryColor": "#003A70", "secondaryColor": "#CE0E2D"},
    },
]

USERS = [
    ("admin@admin.com", "Super", "Admin", UserRole.SUPER_ADMIN, None),
    ("admin@aa.com", "John", "Smith", UserRole.ADMIN, "AA"),
    ("editor@aa.com", "Jane", "Doe", UserRole.EDITOR, "AA"),
    ("viewer@delta.com", "Mike", "Johnson", UserRole.VIEWER, "DL"),
]

# Seeding runs with global rights; no token involved
SEED_IDENTITY = AuthContext(
    user_id="seed",
    email="seed@localhost",
    role=UserRole.SUPER_ADMIN,
    airline_id=None,
)


def _seed_manual(manual: ManualService, airline_id: str) -> bool:
    if manual.list_chapters(SEED_IDENTITY, airline_id, include_inactive=True):
        return False

    chapter = manual.create_chapter(SEED_IDENTITY, {
        "airline_id": airline_id,
        "title": "Safety Procedures",
        "description": "Standard safety operating procedures and protocols",
        "order": 1,
    })

    preflight = manual.create_section(SEED_IDENTITY, chapter["id"], {
        "title": "Pre-Flight Safety Check",
        "description": "Safety checks to perform before departure",
        "order": 1,
    })
    manual.create_content(SEED_IDENTITY, preflight["id"], {
        "title": "Cabin Safety Equipment",
        "content_type": "TEXT",
        "body": "<h2>Cabin Safety Equipment</h2><p>Ensure all safety equipment is "
                "properly installed and functional. Questions? Use the {{CONTACT_BUTTON}}.</p>",
        "order": 1,
    })
    manual.create_content(SEED_IDENTITY, preflight["id"], {
        "title": "Emergency Exit Diagram",
        "content_type": "IMAGE",
        "body": "https://example.com/exit-diagram.png",
        "order": 2,
        "metadata": {"fileSize": "256KB", "dimensions": "1920x1080"},
    })

    emergency = manual.create_section(SEED_IDENTITY, chapter["id"], {
        "title": "In-Flight Emergency Procedures",
        "description": "Procedures to follow during in-flight emergencies",
        "order": 2,
    })
    manual.create_content(SEED_IDENTITY, emergency["id"], {
        "title": "Emergency Landing Protocol",
        "content_type": "TEXT",
        "body": "<h2>Emergency Landing</h2><p>Step-by-step procedures {{name}} crews "
                "follow for emergency landing situations.</p>",
        "order": 1,
    })
    return True


def seed_demo_data(db: DatabaseManager, password: str = DEFAULT_PASSWORD) -> Dict[str, Any]:
    """
    Insert the demo airlines, users and manual.

    Returns:
        Counts of what was created in this run
    """
    summary = {"airlines": 0, "users": 0, "chapters": 0}

    airline_ids = {}
    for entry in AIRLINES:
        airline = db.get_airline_by_code(entry["code"])
        if not airline:
            airline = db.create_airline(**entry)
            summary["airlines"] += 1
        airline_ids[airline.code] = airline.id

    password_hash = PasswordManager.hash_password(password)
    for email, first_name, last_name, role, airline_code in USERS:
        if db.get_user_by_email(email):
            continue
        db.create_user(
            email=email,
            password_hash=password_hash,
            role=role,
            airline_id=airline_ids[airline_code] if airline_code else None,
            first_name=first_name,
            last_name=last_name,
        )
        summary["users"] += 1

    if _seed_manual(ManualService(db), airline_ids["AA"]):
        summary["chapters"] += 1

    logger.info(f"Seed completed: {summary}")
    return summary


# =============================================================================
# CLI SCRIPT
# =============================================================================

def main():
    """Command-line interface for seeding."""
    parser = argparse.ArgumentParser(
        description="Seed the database with demo airlines, users and a sample manual"
    )
    parser.add_argument(
        "-d", "--database",
        default="data/manuals.db",
        help="Database path (default: data/manuals.db)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    db = DatabaseManager(args.database)
    db.initialize()
    summary = seed_demo_data(db)

    print(f"\n{'='*50}")
    print("SEED RESULTS")
    print(f"{'='*50}")
    print(f"Airlines created: {summary['airlines']}")
    print(f"Users created: {summary['users']}")
    print(f"Chapters created: {summary['chapters']}")
    print(f"\nLogin credentials (password for all: {DEFAULT_PASSWORD}):")
    for email, _, _, role, airline_code in USERS:
        print(f"  - {email} ({role.value}{' - ' + airline_code if airline_code else ''})")


if __name__ == "__main__":
    main()
