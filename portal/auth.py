"""Thin wrapper over the hosted identity provider and role procedures."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from supabase import AuthApiError, AuthError, AuthRetryableError, AuthWeakPasswordError
from supabase import PostgrestAPIError

from .models import AccountMember, AppRole, AuthUser, Profile, UserRole

logger = logging.getLogger("portal.auth")


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    USER_ALREADY_EXISTS = "user_already_exists"
    WEAK_PASSWORD = "weak_password"
    NETWORK = "network"
    STORE = "store"
    UNKNOWN = "unknown"


class AuthServiceError(Exception):
    """Raised when the provider or the store rejects an auth operation."""

    def __init__(self, kind: AuthErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message


_ERROR_CODES = {
    "invalid_credentials": AuthErrorKind.INVALID_CREDENTIALS,
    "email_not_confirmed": AuthErrorKind.EMAIL_NOT_CONFIRMED,
    "user_already_exists": AuthErrorKind.USER_ALREADY_EXISTS,
    "email_exists": AuthErrorKind.USER_ALREADY_EXISTS,
    "weak_password": AuthErrorKind.WEAK_PASSWORD,
}

_ERROR_MESSAGES = (
    ("invalid login credentials", AuthErrorKind.INVALID_CREDENTIALS),
    ("email not confirmed", AuthErrorKind.EMAIL_NOT_CONFIRMED),
    ("user already registered", AuthErrorKind.USER_ALREADY_EXISTS),
)


def classify_provider_error(exc: BaseException) -> AuthServiceError:
    """Translate a provider, store or transport failure into an :class:`AuthServiceError`."""

    if isinstance(exc, AuthServiceError):
        return exc

    message = str(getattr(exc, "message", "") or exc)

    if isinstance(exc, PostgrestAPIError):
        return AuthServiceError(AuthErrorKind.STORE, message)
    if isinstance(exc, (httpx.HTTPError, AuthRetryableError)):
        return AuthServiceError(AuthErrorKind.NETWORK, message)
    if isinstance(exc, AuthWeakPasswordError):
        return AuthServiceError(AuthErrorKind.WEAK_PASSWORD, message)

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in _ERROR_CODES:
        return AuthServiceError(_ERROR_CODES[code], message)

    lowered = message.lower()
    for needle, kind in _ERROR_MESSAGES:
        if needle in lowered:
            return AuthServiceError(kind, message)

    return AuthServiceError(AuthErrorKind.UNKNOWN, message)


PROVIDER_ERRORS = (AuthError, AuthApiError, PostgrestAPIError, httpx.HTTPError)

# Raised by the record `from_row` constructors on rows they cannot read.
ROW_ERRORS = (KeyError, TypeError, ValueError)


def malformed_row_error(table: str, exc: Exception) -> AuthServiceError:
    logger.error("store.row.malformed", extra={"table": table, "error": str(exc)})
    return AuthServiceError(AuthErrorKind.STORE, f"Unreadable {table} record: {exc}")


def _rows(response: Any) -> List[Dict[str, Any]]:
    if response is None:
        return []
    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


def _single_row(response: Any) -> Optional[Dict[str, Any]]:
    rows = _rows(response)
    return rows[0] if rows else None


class AuthService:
    """Sign-up, sign-in and role lookups against one provider client.

    No call is retried or cached. The role checks go to the database
    procedures and are the authoritative answer; compare
    :meth:`AuthUser.has_role`, which only reads the cached records.
    """

    def __init__(self, client: Any, *, redirect_url: Optional[str] = None) -> None:
        self._client = client
        self._redirect_url = redirect_url

    @property
    def client(self) -> Any:
        return self._client

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        options: Dict[str, Any] = {"data": dict(metadata or {})}
        if self._redirect_url:
            options["email_redirect_to"] = self._redirect_url

        logger.info("auth.signup.attempt", extra={"email": email})
        try:
            response = await self._client.auth.sign_up(
                {"email": email, "password": password, "options": options}
            )
        except PROVIDER_ERRORS as exc:
            error = classify_provider_error(exc)
            logger.warning(
                "auth.signup.failed",
                extra={"email": email, "kind": error.kind.value},
            )
            raise error from exc

        user = getattr(response, "user", None)
        identities = getattr(user, "identities", None)
        if user is not None and identities is not None and len(identities) == 0:
            # Masked duplicate: the provider hides existing addresses behind
            # an identity-less user instead of an error.
            logger.info("auth.signup.duplicate", extra={"email": email})
            raise AuthServiceError(AuthErrorKind.USER_ALREADY_EXISTS, "User already registered")

        logger.info("auth.signup.success", extra={"email": email})
        return response

    async def sign_in(self, email: str, password: str) -> Any:
        logger.info("auth.login.attempt", extra={"email": email})
        try:
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except PROVIDER_ERRORS as exc:
            error = classify_provider_error(exc)
            logger.warning(
                "auth.login.failed",
                extra={"email": email, "kind": error.kind.value},
            )
            raise error from exc

        if getattr(response, "session", None) is None:
            raise AuthServiceError(AuthErrorKind.INVALID_CREDENTIALS, "No session returned")
        logger.info("auth.login.success", extra={"user_id": response.user.id})
        return response

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc
        logger.info("auth.logout")

    async def get_current_user(self) -> Optional[AuthUser]:
        """Resolve the signed-in identity with its profile and role records."""
        try:
            user_response = await self._client.auth.get_user()
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc

        user = getattr(user_response, "user", None)
        if user is None:
            return None

        profile_query = (
            self._client.table("profiles")
            .select("*")
            .eq("user_id", user.id)
            .maybe_single()
            .execute()
        )
        roles_query = (
            self._client.table("user_roles")
            .select("*")
            .eq("user_id", user.id)
            .execute()
        )
        try:
            profile_result, roles_result = await asyncio.gather(profile_query, roles_query)
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc

        profile_row = _single_row(profile_result)
        try:
            profile = Profile.from_row(profile_row) if profile_row else None
            roles = tuple(UserRole.from_row(row) for row in _rows(roles_result))
        except ROW_ERRORS as exc:
            raise malformed_row_error("profiles/user_roles", exc) from exc
        return AuthUser(id=str(user.id), email=str(user.email or ""), profile=profile, roles=roles)

    async def _rpc(self, name: str, params: Dict[str, Any]) -> Any:
        try:
            response = await self._client.rpc(name, params).execute()
        except PROVIDER_ERRORS as exc:
            error = classify_provider_error(exc)
            logger.error("auth.rpc.failed", extra={"rpc": name, "kind": error.kind.value})
            raise error from exc
        return getattr(response, "data", None)

    async def has_role(self, user_id: str, account_id: str, role: AppRole) -> bool:
        data = await self._rpc(
            "has_role",
            {"_user_id": user_id, "_account_id": account_id, "_role": AppRole(role).value},
        )
        return bool(data)

    async def is_super_admin(self, user_id: str) -> bool:
        return bool(await self._rpc("is_super_admin", {"_user_id": user_id}))

    async def get_user_account(self, user_id: str) -> Optional[str]:
        data = await self._rpc("get_user_account", {"_user_id": user_id})
        if not data:
            return None
        return str(data)

    async def create_profile(
        self,
        user_id: str,
        account_id: str,
        email: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Profile:
        payload = {
            "user_id": user_id,
            "account_id": account_id,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
        try:
            response = await self._client.table("profiles").insert(payload).execute()
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc
        row = _single_row(response)
        if row is None:
            raise AuthServiceError(AuthErrorKind.STORE, "Profile insert returned no row")
        try:
            return Profile.from_row(row)
        except ROW_ERRORS as exc:
            raise malformed_row_error("profiles", exc) from exc

    async def assign_role(
        self,
        user_id: str,
        account_id: str,
        role: AppRole,
        granted_by: str,
    ) -> UserRole:
        payload = {
            "user_id": user_id,
            "account_id": account_id,
            "role": AppRole(role).value,
            "granted_by": granted_by,
        }
        try:
            response = await self._client.table("user_roles").insert(payload).execute()
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc
        row = _single_row(response)
        if row is None:
            raise AuthServiceError(AuthErrorKind.STORE, "Role insert returned no row")
        logger.info(
            "auth.role.assigned",
            extra={"user_id": user_id, "account_id": account_id, "role": payload["role"]},
        )
        try:
            return UserRole.from_row(row)
        except ROW_ERRORS as exc:
            raise malformed_row_error("user_roles", exc) from exc

    async def list_account_members(self, account_id: str) -> List[AccountMember]:
        profiles_query = (
            self._client.table("profiles")
            .select("*")
            .eq("account_id", account_id)
            .execute()
        )
        roles_query = (
            self._client.table("user_roles")
            .select("*")
            .eq("account_id", account_id)
            .execute()
        )
        try:
            profiles_result, roles_result = await asyncio.gather(profiles_query, roles_query)
        except PROVIDER_ERRORS as exc:
            raise classify_provider_error(exc) from exc

        try:
            profiles = [Profile.from_row(row) for row in _rows(profiles_result)]
            roles = [UserRole.from_row(row) for row in _rows(roles_result)]
        except ROW_ERRORS as exc:
            raise malformed_row_error("profiles/user_roles", exc) from exc
        profiles.sort(key=lambda profile: profile.display_name.lower())
        return AccountMember.group(profiles, roles)


__all__ = [
    "AuthErrorKind",
    "AuthService",
    "AuthServiceError",
    "PROVIDER_ERRORS",
    "ROW_ERRORS",
    "classify_provider_error",
    "malformed_row_error",
]
