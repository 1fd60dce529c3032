import sys
from datetime import timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fake_supabase import FakeSupabase
from portal.config import PortalSettings
from portal.web import create_app


EMAIL = "anna@example.com"
PASSWORD = "hemligt-lösen"
ACCOUNT_ID = "account-1"


@pytest.fixture
def settings() -> PortalSettings:
    return PortalSettings(
        supabase_url="https://project.supabase.co",
        supabase_key="sb_publishable_test_key",
        session_secret="tests-secret-key",
        session_ttl=timedelta(hours=1),
        refresh_timeout=2.0,
    )


@pytest.fixture
def backends():
    """Every fake client handed out to the app, in creation order."""
    return []


@pytest.fixture
def member(backends):
    """Registration data applied to each new fake client."""
    return {"email": EMAIL, "password": PASSWORD, "user_id": "user-anna", "account_id": ACCOUNT_ID, "roles": []}


@pytest.fixture
def make_app(settings, backends, member):
    def _make(**overrides):
        async def factory():
            client = FakeSupabase()
            client.auth.add_user(member["email"], member["password"], user_id=member["user_id"])
            if member["account_id"] is not None:
                client.add_profile(
                    member["user_id"],
                    member["account_id"],
                    member["email"],
                    first_name="Anna",
                    last_name="Andersson",
                )
            for role in member["roles"]:
                client.add_role(member["user_id"], member["account_id"] or ACCOUNT_ID, role)
            for customize in overrides.get("customize", ()):
                customize(client)
            backends.append(client)
            return client

        return create_app(settings=overrides.get("settings", settings), client_factory=factory)

    return _make
