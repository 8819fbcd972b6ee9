"""
tests/test_cli.py -- Tests for the admin CLI in main.py.

The CLI opens its own IdentityStore; tests swap it for the isolated
in-memory store fixture and neutralize close() so the DB survives the command.
"""

from __future__ import annotations

import pytest

import main
from auth.passwords import verify_password
from identity.models import GlobalRole, InstitutionRole
from identity.store import IdentityStore


@pytest.fixture
def cli_store(store: IdentityStore, monkeypatch: pytest.MonkeyPatch) -> IdentityStore:
    monkeypatch.setattr(store, "close", lambda: None)
    monkeypatch.setattr(main, "IdentityStore", lambda: store)
    return store


class TestSeed:
    def test_seed_is_idempotent(self, store: IdentityStore) -> None:
        first = main.seed_demo_data(store)
        second = main.seed_demo_data(store)
        assert first == second
        assert len(store.list_institutions()) == len(main.DEMO_INSTITUTIONS)
        assert store.user_counts()["total"] == len(main.DEMO_USERS) + 1

    def test_seed_creates_demo_accounts(self, store: IdentityStore) -> None:
        ids = main.seed_demo_data(store)
        admin = store.find_user_by_email("admin@test.ro")
        assert admin.global_role is GlobalRole.PLATFORM_ADMIN
        assert verify_password("admin123", admin.password_hash)
        membership = store.get_membership(ids["editor.s3@primarie.ro"], ids["Primăria Sector 3"])
        assert membership.role is InstitutionRole.INSTITUTION_EDITOR
        regulator = store.find_user_by_email("regulator@mediu.gov.ro")
        assert regulator.global_role is GlobalRole.REGULATOR_VIEWER
        assert store.list_memberships_for_user(regulator.id) == []

    def test_seed_command(self, cli_store: IdentityStore, capsys: pytest.CaptureFixture[str]) -> None:
        assert main.main(["seed"]) == 0
        assert "admin@test.ro" in capsys.readouterr().out
        assert cli_store.has_users()


class TestCreateAdmin:
    def test_creates_platform_admin(self, cli_store: IdentityStore) -> None:
        assert main.main(["create-admin", "--email", "Boss@Test.ro", "--password", "long-enough"]) == 0
        user = cli_store.find_user_by_email("boss@test.ro")
        assert user.global_role is GlobalRole.PLATFORM_ADMIN
        assert user.is_active

    def test_duplicate_email_fails(self, cli_store: IdentityStore) -> None:
        main.main(["create-admin", "--email", "dup@test.ro", "--password", "long-enough"])
        assert main.main(["create-admin", "--email", "dup@test.ro", "--password", "long-enough"]) == 1

    def test_short_password_fails(self, cli_store: IdentityStore) -> None:
        assert main.main(["create-admin", "--email", "x@test.ro", "--password", "123"]) == 1
        assert cli_store.find_user_by_email("x@test.ro") is None

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            main.main([])
