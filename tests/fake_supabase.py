"""In-memory stand-in for the async Supabase client used by the portal tests."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from supabase import AuthApiError, PostgrestAPIError


@dataclass
class FakeUser:
    id: str
    email: str
    identities: Optional[list] = field(default_factory=lambda: [{"provider": "email"}])
    user_metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FakeSession:
    user: FakeUser
    access_token: str = "access-token"


@dataclass
class FakeAuthResponse:
    user: Optional[FakeUser]
    session: Optional[FakeSession]


@dataclass
class FakeUserResponse:
    user: FakeUser


@dataclass
class FakeResponse:
    data: Any


class FakeSubscription:
    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        self.active = False
        self._unsubscribe()


def provider_error(message: str, code: Optional[str] = None, status: int = 400) -> AuthApiError:
    return AuthApiError(message, status, code)


def store_error(message: str = "permission denied", code: str = "42501") -> PostgrestAPIError:
    return PostgrestAPIError({"message": message, "code": code, "details": None, "hint": None})


class FakeAuth:
    def __init__(self, backend: "FakeSupabase") -> None:
        self._backend = backend
        self._credentials: Dict[str, tuple[str, FakeUser]] = {}
        self._callbacks: Dict[int, Callable[[str, Any], None]] = {}
        self._callback_ids = itertools.count(1)
        self.session: Optional[FakeSession] = None
        self.errors: Dict[str, BaseException] = {}
        self.delays: Dict[str, float] = {}
        self.sign_up_requests: List[Dict[str, Any]] = []

    def add_user(self, email: str, password: str, user_id: Optional[str] = None) -> FakeUser:
        user = FakeUser(id=user_id or f"user-{len(self._credentials) + 1}", email=email)
        self._credentials[email] = (password, user)
        return user

    def start_session(self, user: FakeUser) -> FakeSession:
        self.session = FakeSession(user=user)
        return self.session

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def on_auth_state_change(self, callback: Callable[[str, Any], None]) -> FakeSubscription:
        self._backend.calls.append(("auth", "on_auth_state_change"))
        callback_id = next(self._callback_ids)
        self._callbacks[callback_id] = callback
        return FakeSubscription(lambda: self._callbacks.pop(callback_id, None))

    def emit(self, event: str, session: Any) -> None:
        for callback in list(self._callbacks.values()):
            callback(event, session)

    async def _raise_for(self, operation: str) -> None:
        self._backend.calls.append(("auth", operation))
        delay = self.delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        error = self.errors.get(operation)
        if error is not None:
            raise error

    async def sign_up(self, credentials: Dict[str, Any]) -> FakeAuthResponse:
        await self._raise_for("sign_up")
        self.sign_up_requests.append(credentials)
        email = credentials["email"]
        if email in self._credentials:
            return FakeAuthResponse(user=FakeUser(id="masked", email=email, identities=[]), session=None)
        user = self.add_user(email, credentials["password"])
        user.user_metadata = dict(credentials.get("options", {}).get("data", {}))
        return FakeAuthResponse(user=user, session=None)

    async def sign_in_with_password(self, credentials: Dict[str, Any]) -> FakeAuthResponse:
        await self._raise_for("sign_in_with_password")
        stored = self._credentials.get(credentials["email"])
        if stored is None or stored[0] != credentials["password"]:
            raise provider_error("Invalid login credentials", "invalid_credentials")
        session = self.start_session(stored[1])
        self.emit("SIGNED_IN", session)
        return FakeAuthResponse(user=session.user, session=session)

    async def sign_out(self) -> None:
        await self._raise_for("sign_out")
        self.session = None
        self.emit("SIGNED_OUT", None)

    async def get_session(self) -> Optional[FakeSession]:
        await self._raise_for("get_session")
        return self.session

    async def get_user(self) -> Optional[FakeUserResponse]:
        await self._raise_for("get_user")
        if self.session is None:
            return None
        return FakeUserResponse(user=self.session.user)


class FakeQuery:
    def __init__(self, backend: "FakeSupabase", table: str) -> None:
        self._backend = backend
        self._table = table
        self._filters: List[tuple[str, Any]] = []
        self._order: Optional[tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._single = False
        self._payload: Optional[Dict[str, Any]] = None

    def select(self, *columns: str) -> "FakeQuery":
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append((column, value))
        return self

    def order(self, column: str, *, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, size: int) -> "FakeQuery":
        self._limit = size
        return self

    def maybe_single(self) -> "FakeQuery":
        self._single = True
        return self

    def insert(self, payload: Dict[str, Any]) -> "FakeQuery":
        self._payload = dict(payload)
        return self

    async def execute(self) -> Optional[FakeResponse]:
        operation = "insert" if self._payload is not None else "select"
        self._backend.calls.append((self._table, operation))
        error = self._backend.table_errors.get((self._table, operation))
        if error is not None:
            raise error

        rows = self._backend.tables.setdefault(self._table, [])
        if self._payload is not None:
            row = {"id": f"{self._table}-{len(rows) + 1}", **self._payload}
            rows.append(row)
            return FakeResponse(data=[dict(row)])

        matched = [dict(row) for row in rows if all(row.get(c) == v for c, v in self._filters)]
        if self._order is not None:
            column, desc = self._order
            matched.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        if self._single:
            if not matched:
                return None
            return FakeResponse(data=matched[0])
        return FakeResponse(data=matched)


class FakeRpc:
    def __init__(self, backend: "FakeSupabase", name: str, params: Dict[str, Any]) -> None:
        self._backend = backend
        self._name = name
        self._params = params

    async def execute(self) -> FakeResponse:
        self._backend.calls.append(("rpc", self._name))
        self._backend.rpc_calls.append((self._name, dict(self._params)))
        error = self._backend.rpc_errors.get(self._name)
        if error is not None:
            raise error
        override = self._backend.rpc_results.get(self._name)
        if override is not None:
            return FakeResponse(data=override(self._params))
        return FakeResponse(data=getattr(self._backend, f"_rpc_{self._name}")(self._params))


class FakeSupabase:
    """Records every call; procedures answer from the in-memory tables."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {"profiles": [], "user_roles": [], "tickets": []}
        self.table_errors: Dict[tuple[str, str], BaseException] = {}
        self.rpc_errors: Dict[str, BaseException] = {}
        self.rpc_results: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.rpc_calls: List[tuple[str, Dict[str, Any]]] = []
        self.calls: List[tuple[str, str]] = []
        self.auth = FakeAuth(self)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def calls_to(self, target: str, operation: Optional[str] = None) -> int:
        return sum(
            1 for name, op in self.calls if name == target and (operation is None or op == operation)
        )

    def add_profile(self, user_id: str, account_id: str, email: str, **fields: Any) -> Dict[str, Any]:
        row = {
            "id": f"profile-{user_id}",
            "user_id": user_id,
            "account_id": account_id,
            "email": email,
            "locale": "sv",
            "is_active": True,
            **fields,
        }
        self.tables["profiles"].append(row)
        return row

    def add_role(self, user_id: str, account_id: str, role: str) -> Dict[str, Any]:
        row = {
            "id": f"role-{len(self.tables['user_roles']) + 1}",
            "user_id": user_id,
            "account_id": account_id,
            "role": role,
        }
        self.tables["user_roles"].append(row)
        return row

    def _rpc_has_role(self, params: Dict[str, Any]) -> bool:
        return any(
            row["user_id"] == params["_user_id"]
            and row["account_id"] == params["_account_id"]
            and row["role"] == params["_role"]
            for row in self.tables["user_roles"]
        )

    def _rpc_is_super_admin(self, params: Dict[str, Any]) -> bool:
        return any(
            row["user_id"] == params["_user_id"] and row["role"] == "super_admin"
            for row in self.tables["user_roles"]
        )

    def _rpc_get_user_account(self, params: Dict[str, Any]) -> Optional[str]:
        for row in self.tables["profiles"]:
            if row["user_id"] == params["_user_id"]:
                return row["account_id"]
        return None
