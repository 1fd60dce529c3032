"""Record shapes mirrored from the hosted portal database."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


class AppRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ACCOUNT_ADMIN = "account_admin"
    ACCOUNT_USER = "account_user"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


_CLOCK = re.compile(
    r"^(?P<clock>\d{2}:\d{2}(?::\d{2})?)(?:\.(?P<fraction>\d+))?(?P<offset>[+-]\d{2}(?::?\d{2})?)?$"
)


def _normalize_timestamp(text: str) -> str:
    # PostgREST trims trailing zeros from the fraction and may send "+00" or "Z".
    text = text.strip().replace(" ", "T", 1)
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    day, separator, clock = text.partition("T")
    match = _CLOCK.match(clock) if separator else None
    if match is None:
        return text
    normalized = match.group("clock")
    fraction = match.group("fraction")
    if fraction:
        normalized += "." + fraction[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset:
        digits = offset[1:].replace(":", "")
        normalized += f"{offset[0]}{digits[:2]}:{digits[2:4] or '00'}"
    return f"{day}T{normalized}"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(_normalize_timestamp(str(value)))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _mapping(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


@dataclass(frozen=True)
class Account:
    """Tenant grouping profiles, roles and tickets."""

    id: str
    name: str
    slug: str
    status: AccountStatus
    settings: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        return cls(
            id=str(row["id"]),
            name=str(row["name"]),
            slug=str(row["slug"]),
            status=AccountStatus(row.get("status", AccountStatus.PENDING.value)),
            settings=_mapping(row.get("settings")),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
        )


@dataclass(frozen=True)
class Profile:
    """Per-identity user record owned by exactly one account."""

    id: str
    user_id: str
    account_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    locale: str = "sv"
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        if parts:
            return " ".join(parts)
        return self.email

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            account_id=str(row["account_id"]),
            email=str(row.get("email") or ""),
            first_name=_optional_str(row.get("first_name")),
            last_name=_optional_str(row.get("last_name")),
            avatar_url=_optional_str(row.get("avatar_url")),
            locale=str(row.get("locale") or "sv"),
            is_active=bool(row.get("is_active", True)),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
        )


@dataclass(frozen=True)
class UserRole:
    """A role granted to a user within one account."""

    id: str
    user_id: str
    account_id: str
    role: AppRole
    granted_by: Optional[str] = None
    granted_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserRole":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            account_id=str(row["account_id"]),
            role=AppRole(row["role"]),
            granted_by=_optional_str(row.get("granted_by")),
            granted_at=_parse_datetime(row.get("granted_at")),
        )


@dataclass(frozen=True)
class Invitation:
    """Pending grant of a role to an email address."""

    id: str
    account_id: str
    email: str
    role: AppRole
    token: str
    invited_by: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_pending(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return self.accepted_at is None and self.expires_at > current

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Invitation":
        expires_at = _parse_datetime(row["expires_at"])
        if expires_at is None:
            raise ValueError("Invitation rows require an expires_at timestamp")
        return cls(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            email=str(row["email"]),
            role=AppRole(row["role"]),
            token=str(row["token"]),
            invited_by=str(row["invited_by"]),
            expires_at=expires_at,
            accepted_at=_parse_datetime(row.get("accepted_at")),
            created_at=_parse_datetime(row.get("created_at")),
        )


@dataclass(frozen=True)
class Ticket:
    """Support ticket raised by a user on behalf of their account."""

    id: str
    account_id: str
    created_by: str
    title: str
    status: TicketStatus = TicketStatus.OPEN
    priority: int = 3
    assigned_to: Optional[str] = None
    description: Optional[str] = None
    ticket_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Ticket":
        return cls(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            created_by=str(row["created_by"]),
            title=str(row["title"]),
            status=TicketStatus(row.get("status", TicketStatus.OPEN.value)),
            priority=int(row.get("priority", 3)),
            assigned_to=_optional_str(row.get("assigned_to")),
            description=_optional_str(row.get("description")),
            ticket_type=_optional_str(row.get("type")),
            metadata=_mapping(row.get("metadata")),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
        )


@dataclass(frozen=True)
class TicketAttachment:
    id: str
    ticket_id: str
    file_name: str
    file_path: str
    uploaded_by: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuditLog:
    id: str
    account_id: str
    user_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuthUser:
    """Identity, profile and role records cached for one signed-in user.

    The role predicates only inspect the cached records. They drive what the
    pages render and are never an authorization decision; the database's
    ``has_role``/``is_super_admin`` procedures and row level security are.
    """

    id: str
    email: str
    profile: Optional[Profile] = None
    roles: Tuple[UserRole, ...] = ()

    @property
    def account_id(self) -> Optional[str]:
        if self.profile is None:
            return None
        return self.profile.account_id

    def has_role(self, account_id: str, role: AppRole) -> bool:
        return any(
            record.account_id == account_id and record.role == role
            for record in self.roles
        )

    def is_super_admin(self) -> bool:
        return any(record.role == AppRole.SUPER_ADMIN for record in self.roles)


@dataclass(frozen=True)
class AccountMember:
    """A profile together with the roles it holds inside its account."""

    profile: Profile
    roles: Tuple[AppRole, ...] = ()

    @staticmethod
    def group(profiles: Iterable[Profile], roles: Iterable[UserRole]) -> list["AccountMember"]:
        by_user: Dict[str, list[AppRole]] = {}
        for record in roles:
            by_user.setdefault(record.user_id, []).append(record.role)
        return [
            AccountMember(profile=profile, roles=tuple(by_user.get(profile.user_id, ())))
            for profile in profiles
        ]


__all__ = [
    "Account",
    "AccountMember",
    "AccountStatus",
    "AppRole",
    "AuditLog",
    "AuthUser",
    "Invitation",
    "Profile",
    "Ticket",
    "TicketAttachment",
    "TicketStatus",
    "UserRole",
]
