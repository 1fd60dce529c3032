"""In-memory registry of auth contexts for the portal's browser sessions."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .context import AuthContext

logger = logging.getLogger("portal.sessions")


@dataclass
class _ContextRecord:
    context: AuthContext
    expires_at: datetime


class ContextRegistry:
    """Issue, resolve and retire the auth context behind each session cookie."""

    def __init__(self, *, ttl: timedelta = timedelta(hours=8)) -> None:
        self._ttl = ttl
        self._contexts: Dict[str, _ContextRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    async def register(self, context: AuthContext) -> str:
        await self.purge_expired()
        token = secrets.token_urlsafe(32)
        record = _ContextRecord(context=context, expires_at=self._now() + self._ttl)
        with self._lock:
            self._contexts[token] = record
        return token

    async def resolve(self, token: Optional[str]) -> Optional[AuthContext]:
        if not token:
            return None
        now = self._now()
        expired: Optional[AuthContext] = None
        with self._lock:
            record = self._contexts.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                self._contexts.pop(token, None)
                expired = record.context
            else:
                record.expires_at = now + self._ttl
                return record.context
        await expired.close()
        return None

    async def discard(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            record = self._contexts.pop(token, None)
        if record is not None:
            await record.context.close()

    async def purge_expired(self) -> int:
        now = self._now()
        with self._lock:
            stale = [token for token, record in self._contexts.items() if record.expires_at <= now]
            records = [self._contexts.pop(token) for token in stale]
        for record in records:
            await record.context.close()
        if records:
            logger.info("Closed %d expired portal sessions", len(records))
        return len(records)

    async def close_all(self) -> None:
        with self._lock:
            records: List[_ContextRecord] = list(self._contexts.values())
            self._contexts.clear()
        for record in records:
            await record.context.close()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["ContextRegistry"]
