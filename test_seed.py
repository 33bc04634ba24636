"""
Tests for seed.py.
"""

from auth import AuthService
from database_manager import UserRole
from seed import DEFAULT_PASSWORD, SEED_IDENTITY, seed_demo_data
from manual_service import ManualService


class TestSeed:
    """Tests for seed_demo_data."""

    def test_first_run_creates_everything(self, db):
        summary = seed_demo_data(db)

        assert summary == {"airlines": 2, "users": 4, "chapters": 1}
        assert {a.code for a in db.list_airlines()} == {"AA", "DL"}

    def test_second_run_is_a_no_op(self, db):
        seed_demo_data(db)
        assert seed_demo_data(db) == {"airlines": 0, "users": 0, "chapters": 0}

    def test_roles_and_airlines(self, db):
        seed_demo_data(db)

        super_admin = db.get_user_by_email("admin@admin.com")
        assert super_admin.role == UserRole.SUPER_ADMIN
        assert super_admin.airline_id is None

        viewer = db.get_user_by_email("viewer@delta.com")
        assert viewer.role == UserRole.VIEWER
        assert viewer.airline_id == db.get_airline_by_code("DL").id

    def test_seeded_users_can_log_in(self, db, auth_config):
        seed_demo_data(db)
        auth = AuthService(db, config=auth_config)

        for email in ("admin@admin.com", "admin@aa.com", "editor@aa.com", "viewer@delta.com"):
            assert auth.login(email, DEFAULT_PASSWORD)["access_token"]

    def test_sample_manual(self, db):
        seed_demo_data(db)
        manual = ManualService(db)
        aa = db.get_airline_by_code("AA")

        chapters = manual.list_chapters(SEED_IDENTITY, aa.id)
        assert [c["title"] for c in chapters] == ["Safety Procedures"]

        chapter = manual.get_chapter(SEED_IDENTITY, chapters[0]["id"])
        assert [s["title"] for s in chapter["sections"]] == [
            "Pre-Flight Safety Check", "In-Flight Emergency Procedures"
        ]

    def test_only_one_airline_gets_a_manual(self, db):
        seed_demo_data(db)
        airline = db.get_airline_by_code("DL")
        assert ManualService(db).list_chapters(SEED_IDENTITY, airline.id) == []
