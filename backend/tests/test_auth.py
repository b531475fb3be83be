"""
Tests for mapping authenticated accounts onto CI engine actors.
"""
import pytest

from app.auth import actor_from_user, create_access_token, decode_token
from app.models.db_models import UserDB, UserRole


def load_user(db, user_id):
    return db.query(UserDB).filter(UserDB.id == user_id).first()


class TestActorFromUser:

    def test_supplier_account_gets_its_organisation(self, seeded):
        actor = actor_from_user(load_user(seeded, "user-s"))

        assert actor.role == UserRole.SUPPLIER
        assert actor.supplier_id == "sup-1"

    def test_auditor_has_no_organisation(self, seeded):
        actor = actor_from_user(load_user(seeded, "user-a"))

        assert actor.role == UserRole.AUDITOR
        assert actor.supplier_id is None

    def test_supplier_without_organisation(self, seeded):
        seeded.add(UserDB(id="user-new", email="new@example.com", role="supplier"))
        seeded.commit()

        actor = actor_from_user(load_user(seeded, "user-new"))

        assert actor.role == UserRole.SUPPLIER
        assert actor.supplier_id is None

    @pytest.mark.parametrize("stored_role", ["system", "superuser"])
    def test_reserved_and_unknown_roles_become_buyer(self, seeded, stored_role):
        seeded.add(UserDB(id="user-x", email="x@example.com", role=stored_role))
        seeded.commit()

        actor = actor_from_user(load_user(seeded, "user-x"))

        assert actor.role == UserRole.BUYER
        assert actor.supplier_id is None


class TestTokens:

    def test_token_round_trip(self):
        payload = decode_token(create_access_token("user-a", "auditor@example.com", "auditor"))

        assert payload["sub"] == "user-a"
        assert payload["role"] == "auditor"

    def test_tampered_token(self):
        token = create_access_token("user-a", "auditor@example.com")

        header_and_claims = token.rsplit(".", 1)[0]

        assert decode_token(header_and_claims + ".c2lnbmF0dXJl") is None
