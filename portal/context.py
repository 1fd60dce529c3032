"""Per-browser session state kept in sync with the identity provider."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .auth import AuthErrorKind, AuthService, AuthServiceError, classify_provider_error
from .models import AppRole, AuthUser

logger = logging.getLogger("portal.context")

INITIAL_SESSION = "INITIAL_SESSION"


@dataclass(frozen=True)
class AuthSnapshot:
    """Immutable view of an :class:`AuthContext` handed to readers."""

    user: Optional[AuthUser]
    session_user_id: Optional[str]
    loading: bool
    error: Optional[AuthServiceError]
    generation: int
    refreshing: bool = False

    @property
    def signed_in(self) -> bool:
        return self.session_user_id is not None

    @property
    def busy(self) -> bool:
        """True while the first load or a refresh for the current session is pending."""
        return self.loading or self.refreshing


AuthListener = Callable[[AuthSnapshot], None]


def _session_user_id(session: Any) -> Optional[str]:
    user = getattr(session, "user", None) if session is not None else None
    if user is None:
        return None
    return str(user.id)


class AuthContext:
    """Owns the session, composite user and loading state of one browser.

    The context is the only writer of its state. Provider notifications are
    handled synchronously and only enqueue a profile/role refresh; a consumer
    task performs the refresh outside the provider's notification dispatch.
    Each notification bumps a generation number so a refresh that finishes
    after a newer notification is dropped instead of resurrecting a stale
    user.
    """

    def __init__(self, client: Any, *, service: Optional[AuthService] = None) -> None:
        self._client = client
        self._service = service or AuthService(client)
        self._session: Any = None
        self._user: Optional[AuthUser] = None
        self._loading = True
        self._error: Optional[AuthServiceError] = None
        self._generation = 0
        self._pending: Optional[int] = None
        self._listeners: Dict[int, AuthListener] = {}
        self._next_listener_id = 0
        self._queue: Optional[asyncio.Queue[int]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._subscription: Any = None
        self._started = False
        self._closed = False

    @property
    def service(self) -> AuthService:
        return self._service

    @property
    def session(self) -> Any:
        return self._session

    @property
    def user(self) -> Optional[AuthUser]:
        return self._user

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[AuthServiceError]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def refreshing(self) -> bool:
        return self._pending is not None and self._pending == self._generation

    async def start(self) -> None:
        """Subscribe to session changes, then look up an existing session."""
        if self._started:
            return
        self._started = True
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._consume_refreshes())
        # Subscribe before probing so a transition between the two is not lost.
        self._subscription = self._client.auth.on_auth_state_change(self.handle_auth_change)

        try:
            session = await self._client.auth.get_session()
        except Exception as exc:
            logger.warning("Initial session lookup failed: %s", exc)
            self._error = classify_provider_error(exc)
            self._loading = False
            self._notify()
            return

        self.handle_auth_change(INITIAL_SESSION, session)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            with suppress(Exception):
                self._subscription.unsubscribe()
            self._subscription = None
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        self._listeners.clear()

    def handle_auth_change(self, event: str, session: Any) -> None:
        """Provider callback; must return without awaiting provider calls."""
        self._session = session
        self._generation += 1
        generation = self._generation
        user_id = _session_user_id(session)
        logger.debug(
            "Session change %s (generation %d, user %s)", event, generation, user_id
        )

        if user_id is not None and self._queue is not None and not self._closed:
            self._pending = generation
            self._queue.put_nowait(generation)
            return

        self._pending = None
        self._user = None
        self._error = None
        self._loading = False
        self._notify()

    async def _consume_refreshes(self) -> None:
        assert self._queue is not None
        while True:
            generation = await self._queue.get()
            try:
                if generation != self._generation:
                    logger.debug("Skipping superseded refresh %d", generation)
                    continue
                await self._refresh(generation)
            except Exception as exc:
                logger.exception("Profile refresh failed unexpectedly")
                if generation == self._generation:
                    self._user = None
                    self._error = AuthServiceError(AuthErrorKind.UNKNOWN, str(exc))
                    self._pending = None
                    self._loading = False
                    self._notify()
            finally:
                self._queue.task_done()

    async def _refresh(self, generation: int) -> None:
        try:
            user = await self._service.get_current_user()
        except AuthServiceError as exc:
            if generation != self._generation:
                return
            logger.warning("Could not load profile and roles: %s", exc)
            self._user = None
            self._error = exc
        else:
            if generation != self._generation:
                logger.debug("Discarding refresh %d superseded by %d", generation, self._generation)
                return
            self._user = user
            self._error = None
        self._pending = None
        self._loading = False
        self._notify()

    async def settle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued refresh has been consumed."""
        if self._queue is None:
            return not self._loading
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(
            user=self._user,
            session_user_id=_session_user_id(self._session),
            loading=self._loading,
            error=self._error,
            generation=self._generation,
            refreshing=self.refreshing,
        )

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        def _unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        listeners: List[AuthListener] = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Auth state listener failed")

    async def sign_in(self, email: str, password: str) -> None:
        await self._service.sign_in(email, password)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        await self._service.sign_up(email, password, metadata)

    async def sign_out(self) -> None:
        await self._service.sign_out()

    def has_role(self, account_id: str, role: AppRole) -> bool:
        """Rendering hint only; see :class:`AuthUser`."""
        if self._user is None:
            return False
        return self._user.has_role(account_id, role)

    def is_super_admin(self) -> bool:
        if self._user is None:
            return False
        return self._user.is_super_admin()


__all__ = ["AuthContext", "AuthListener", "AuthSnapshot", "INITIAL_SESSION"]
