import asyncio

from fake_supabase import FakeSession, FakeSupabase, FakeUser, provider_error
from portal.auth import AuthErrorKind, AuthServiceError
from portal.context import AuthContext
from portal.models import AppRole, AuthUser, UserRole


def _user(user_id="user-1", *roles):
    return AuthUser(
        id=user_id,
        email=f"{user_id}@example.com",
        roles=tuple(
            UserRole(id=f"r{index}", user_id=user_id, account_id=account, role=role)
            for index, (account, role) in enumerate(roles)
        ),
    )


class ScriptedService:
    """Answers ``get_current_user`` from a script, optionally held back."""

    def __init__(self, *results, hold=False):
        self.results = list(results)
        self.calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    async def get_current_user(self):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def _session(user_id="user-1"):
    return FakeSession(user=FakeUser(id=user_id, email=f"{user_id}@example.com"))


def test_start_subscribes_before_probing_existing_session():
    async def scenario():
        client = FakeSupabase()
        client.auth.session = _session()
        context = AuthContext(client, service=ScriptedService(_user()))
        await context.start()
        await context.settle(1)
        await context.close()
        return client, context

    client, context = asyncio.run(scenario())

    assert client.calls[:2] == [("auth", "on_auth_state_change"), ("auth", "get_session")]
    assert context.user is not None and context.user.id == "user-1"
    assert context.loading is False


def test_loading_stays_true_until_first_refresh_resolves():
    async def scenario():
        client = FakeSupabase()
        client.auth.session = _session()
        service = ScriptedService(_user(), hold=True)
        context = AuthContext(client, service=service)
        await context.start()
        await service.started.wait()
        during = (context.loading, context.user)
        service.release.set()
        await context.settle(1)
        after = (context.loading, context.user)
        await context.close()
        return during, after

    during, after = asyncio.run(scenario())

    assert during == (True, None)
    assert after[0] is False
    assert after[1] is not None


def test_handler_returns_before_refresh_begins():
    async def scenario():
        client = FakeSupabase()
        service = ScriptedService(_user())
        context = AuthContext(client, service=service)
        await context.start()
        client.auth.emit("SIGNED_IN", _session())
        calls_inside_dispatch = service.calls
        await context.settle(1)
        await context.close()
        return calls_inside_dispatch, service.calls

    inside, total = asyncio.run(scenario())

    assert inside == 0
    assert total == 1


def test_one_fetch_per_notification():
    async def scenario():
        client = FakeSupabase()
        service = ScriptedService(_user(), _user())
        context = AuthContext(client, service=service)
        await context.start()
        session = _session()
        client.auth.emit("SIGNED_IN", session)
        await context.settle(1)
        client.auth.emit("TOKEN_REFRESHED", session)
        await context.settle(1)
        await context.close()
        return service.calls

    assert asyncio.run(scenario()) == 2


def test_back_to_back_notifications_only_refresh_latest():
    async def scenario():
        client = FakeSupabase()
        service = ScriptedService(_user("user-2"))
        context = AuthContext(client, service=service)
        await context.start()
        client.auth.emit("SIGNED_IN", _session("user-1"))
        client.auth.emit("SIGNED_IN", _session("user-2"))
        await context.settle(1)
        await context.close()
        return service.calls, context.user

    calls, user = asyncio.run(scenario())

    assert calls == 1
    assert user.id == "user-2"


def test_late_refresh_is_discarded_after_sign_out():
    async def scenario():
        client = FakeSupabase()
        service = ScriptedService(_user(), hold=True)
        context = AuthContext(client, service=service)
        await context.start()
        client.auth.emit("SIGNED_IN", _session())
        await service.started.wait()
        client.auth.emit("SIGNED_OUT", None)
        service.release.set()
        await context.settle(1)
        await context.close()
        return context

    context = asyncio.run(scenario())

    assert context.user is None
    assert context.session is None
    assert context.loading is False


def test_refresh_failure_is_exposed_as_error_state():
    async def scenario():
        client = FakeSupabase()
        failure = AuthServiceError(AuthErrorKind.STORE, "permission denied")
        context = AuthContext(client, service=ScriptedService(failure))
        await context.start()
        client.auth.emit("SIGNED_IN", _session())
        await context.settle(1)
        snapshot = context.snapshot()
        await context.close()
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot.user is None
    assert snapshot.signed_in is True
    assert snapshot.error.kind is AuthErrorKind.STORE
    assert snapshot.loading is False


def test_failed_initial_session_lookup_records_error():
    async def scenario():
        client = FakeSupabase()
        client.auth.errors["get_session"] = provider_error("upstream unavailable", status=503)
        context = AuthContext(client, service=ScriptedService())
        await context.start()
        await context.close()
        return context

    context = asyncio.run(scenario())

    assert context.loading is False
    assert context.error is not None
    assert context.user is None


def test_listeners_receive_snapshots_until_unsubscribed():
    async def scenario():
        client = FakeSupabase()
        context = AuthContext(client, service=ScriptedService(_user(), _user()))
        seen = []
        unsubscribe = context.subscribe(seen.append)
        await context.start()
        client.auth.emit("SIGNED_IN", _session())
        await context.settle(1)
        unsubscribe()
        client.auth.emit("SIGNED_OUT", None)
        await context.close()
        return seen

    seen = asyncio.run(scenario())

    assert [snapshot.user is not None for snapshot in seen] == [False, True]
    assert all(snapshot.loading is False for snapshot in seen)
    assert seen[1].generation > seen[0].generation


def test_close_unsubscribes_from_provider():
    async def scenario():
        client = FakeSupabase()
        context = AuthContext(client, service=ScriptedService())
        await context.start()
        subscribed = client.auth.subscriber_count
        await context.close()
        await context.close()
        return subscribed, client.auth.subscriber_count

    assert asyncio.run(scenario()) == (1, 0)


def test_role_predicates_read_cached_records_only():
    async def scenario():
        client = FakeSupabase()
        user = _user("user-1", ("account-a", AppRole.ACCOUNT_ADMIN))
        context = AuthContext(client, service=ScriptedService(user))
        await context.start()
        client.auth.emit("SIGNED_IN", _session())
        await context.settle(1)
        calls_before = len(client.calls)
        result = (
            context.has_role("account-a", AppRole.ACCOUNT_ADMIN),
            context.has_role("account-b", AppRole.ACCOUNT_ADMIN),
            context.is_super_admin(),
        )
        calls_after = len(client.calls)
        await context.close()
        return result, calls_before, calls_after

    result, before, after = asyncio.run(scenario())

    assert result == (True, False, False)
    assert before == after
