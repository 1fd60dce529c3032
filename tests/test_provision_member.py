"""Tests for the member provisioning script."""

from __future__ import annotations

import asyncio

import pytest

from fake_supabase import FakeSupabase
from portal.models import AppRole
from scripts import provision_member


@pytest.fixture
def backend(monkeypatch):
    client = FakeSupabase()
    client.auth.add_user("admin@example.com", "admin-pass", user_id="admin")
    client.add_role("admin", "account-1", "account_admin")

    async def fake_client(settings):
        return client

    monkeypatch.setattr(provision_member, "create_provider_client", fake_client)
    monkeypatch.setenv("PORTAL_CONFIG", "/nonexistent/portal.yaml")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SB_PUBLISHABLE_KEY", "sb_publishable_test")
    monkeypatch.setenv("PORTAL_SESSION_SECRET", "provisioning-secret")
    return client


def _run(argv, password="admin-pass"):
    args = provision_member.parse_args(argv)
    return asyncio.run(provision_member.provision(args, password))


def test_account_admin_can_grant_user_role(backend, capsys):
    code = _run(
        ["admin@example.com", "user-b", "account-1", "--email", "Bo@Example.com", "--first-name", "Bo"]
    )

    assert code == 0
    assert backend.tables["profiles"][0]["email"] == "bo@example.com"
    grant = backend.tables["user_roles"][-1]
    assert (grant["user_id"], grant["role"], grant["granted_by"]) == ("user-b", "account_user", "admin")
    assert "Granted account_user" in capsys.readouterr().out
    assert backend.auth.session is None


def test_account_admin_cannot_grant_in_other_account(backend, capsys):
    code = _run(["admin@example.com", "user-b", "account-2"])

    assert code == 1
    assert backend.calls_to("user_roles", "insert") == 0
    assert "may not grant" in capsys.readouterr().err


def test_account_admin_cannot_grant_super_admin(backend):
    code = _run(["admin@example.com", "user-b", "account-1", "--role", AppRole.SUPER_ADMIN.value])

    assert code == 1
    assert backend.calls_to("user_roles", "insert") == 0


def test_wrong_admin_password_reports_provider_error(backend, capsys):
    code = _run(["admin@example.com", "user-b", "account-1"], password="wrong")

    assert code == 1
    assert "invalid_credentials" in capsys.readouterr().err
