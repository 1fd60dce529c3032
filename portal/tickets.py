"""Ticket creation and listing against the hosted ``tickets`` table."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, List, Optional

from .auth import (
    PROVIDER_ERRORS,
    ROW_ERRORS,
    AuthService,
    AuthServiceError,
    classify_provider_error,
    malformed_row_error,
)
from .forms import TicketForm
from .models import Ticket, TicketStatus

logger = logging.getLogger("portal.tickets")

DEFAULT_PRIORITY = 3


class TicketErrorKind(str, Enum):
    NO_ACCOUNT = "no_account"
    STORE = "store"


class TicketError(Exception):
    """Raised when a ticket cannot be created or listed."""

    def __init__(self, kind: TicketErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


def _ticket_from_row(row: Any) -> Ticket:
    try:
        return Ticket.from_row(row)
    except ROW_ERRORS as exc:
        error = malformed_row_error("tickets", exc)
        raise TicketError(TicketErrorKind.STORE, error.message) from exc


class TicketService:
    def __init__(self, client: Any, *, auth: Optional[AuthService] = None) -> None:
        self._client = client
        self._auth = auth or AuthService(client)

    async def create_ticket(self, user_id: str, form: TicketForm) -> Optional[Ticket]:
        """Insert an open ticket for the account linked to ``user_id``."""
        try:
            account_id = await self._auth.get_user_account(user_id)
        except AuthServiceError as exc:
            raise TicketError(TicketErrorKind.STORE, str(exc)) from exc

        if account_id is None:
            logger.warning("ticket.create.no_account", extra={"user_id": user_id})
            raise TicketError(TicketErrorKind.NO_ACCOUNT, "User has no linked account")

        payload = {
            "title": form.subject,
            "type": form.type,
            "description": form.description,
            "account_id": account_id,
            "created_by": user_id,
            "status": TicketStatus.OPEN.value,
            "priority": DEFAULT_PRIORITY,
        }
        try:
            response = await self._client.table("tickets").insert(payload).execute()
        except PROVIDER_ERRORS as exc:
            error = classify_provider_error(exc)
            logger.error(
                "ticket.create.failed",
                extra={"user_id": user_id, "account_id": account_id, "error": error.message},
            )
            raise TicketError(TicketErrorKind.STORE, error.message) from exc

        rows = getattr(response, "data", None) or []
        logger.info("ticket.create.success", extra={"user_id": user_id, "account_id": account_id})
        if not rows:
            return None
        return _ticket_from_row(rows[0])

    async def list_tickets(self, account_id: str, *, limit: int = 10) -> List[Ticket]:
        try:
            response = await (
                self._client.table("tickets")
                .select("*")
                .eq("account_id", account_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except PROVIDER_ERRORS as exc:
            error = classify_provider_error(exc)
            raise TicketError(TicketErrorKind.STORE, error.message) from exc
        return [_ticket_from_row(row) for row in getattr(response, "data", None) or []]


__all__ = ["DEFAULT_PRIORITY", "TicketError", "TicketErrorKind", "TicketService"]
