"""Access decisions for pages that need a signed-in user."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .models import AppRole, AuthUser


class AccessDecision(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    SIGN_IN = "sign_in"
    DEFAULT = "default"


def evaluate_access(
    user: Optional[AuthUser],
    loading: bool,
    *,
    required_role: Optional[AppRole] = None,
    requires_super_admin: bool = False,
    account_id: Optional[str] = None,
) -> AccessDecision:
    """Decide whether a gated page may render.

    Checks run in a fixed order: loading, authentication, super-admin
    requirement, then the account-scoped role. A super-admin satisfies any
    role requirement. The scope defaults to the user's own account; a user
    without one cannot satisfy a scoped role.
    """

    if loading:
        return AccessDecision.LOADING
    if user is None:
        return AccessDecision.SIGN_IN
    if requires_super_admin and not user.is_super_admin():
        return AccessDecision.DEFAULT
    if required_role is not None and not user.is_super_admin():
        scope = account_id or user.account_id
        if scope is None or not user.has_role(scope, required_role):
            return AccessDecision.DEFAULT
    return AccessDecision.RENDER


__all__ = ["AccessDecision", "evaluate_access"]
