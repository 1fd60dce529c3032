"""User-facing Swedish texts for notices, validation errors and roles."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from .auth import AuthErrorKind, AuthServiceError
from .models import AppRole

FIELD_MESSAGES: Dict[str, str] = {
    "invalid_email": "Ogiltig e-postadress",
    "password_too_short": "Lösenordet måste vara minst 6 tecken",
    "confirm_password_required": "Bekräfta lösenordet",
    "password_mismatch": "Lösenorden matchar inte",
    "first_name_required": "Förnamn krävs",
    "last_name_required": "Efternamn krävs",
    "subject_required": "Ämne krävs",
    "description_required": "Beskrivning krävs",
    "invalid_ticket_type": "Välj en giltig typ av ärende",
    "invalid_value": "Ogiltigt värde",
}

GENERIC_ERROR_TITLE = "Ett fel uppstod"

# (title, description) per operation and error kind.
SIGN_IN_ERRORS: Dict[AuthErrorKind, Tuple[str, str]] = {
    AuthErrorKind.INVALID_CREDENTIALS: (
        "Inloggning misslyckades",
        "Ogiltig e-postadress eller lösenord.",
    ),
    AuthErrorKind.EMAIL_NOT_CONFIRMED: (
        "Bekräfta din e-post",
        "Vänligen bekräfta din e-postadress innan du loggar in.",
    ),
    AuthErrorKind.NETWORK: (
        GENERIC_ERROR_TITLE,
        "Kunde inte nå inloggningstjänsten. Försök igen.",
    ),
}
SIGN_IN_FALLBACK = "Kunde inte logga in. Försök igen."

SIGN_UP_ERRORS: Dict[AuthErrorKind, Tuple[str, str]] = {
    AuthErrorKind.USER_ALREADY_EXISTS: (
        "Användaren finns redan",
        "En användare med denna e-postadress finns redan. Försök logga in istället.",
    ),
    AuthErrorKind.WEAK_PASSWORD: (
        "Registrering misslyckades",
        "Lösenordet är för svagt. Välj ett starkare lösenord.",
    ),
}
SIGN_UP_FALLBACK = "Kunde inte skapa konto. Försök igen."

NOTICES: Dict[str, Tuple[str, str]] = {
    "signed_in": ("Välkommen!", "Du har loggats in framgångsrikt."),
    "signed_up": ("Konto skapat!", "Bekräfta din e-postadress för att aktivera ditt konto."),
    "signed_out": ("Utloggad", "Du har loggats ut framgångsrikt."),
    "sign_out_failed": (GENERIC_ERROR_TITLE, "Kunde inte logga ut. Försök igen."),
    "ticket_created": ("Ärende skapat", "Ditt ärende har skapats framgångsrikt."),
    "ticket_failed": ("Fel", "Kunde inte skapa ärendet. Försök igen."),
    "no_account_link": (
        "Ingen konto-koppling",
        "Din profil saknar kopplat konto. Kontakta administratör.",
    ),
    "sign_in_required": ("Fel", "Du måste vara inloggad för att skapa ett ärende."),
    "access_denied": ("Åtkomst nekad", "Du saknar behörighet för denna sida."),
    "members_failed": (GENERIC_ERROR_TITLE, "Kunde inte hämta användare. Försök igen."),
    "profile_unavailable": (
        GENERIC_ERROR_TITLE,
        "Kunde inte hämta din profil. Försök igen om en stund.",
    ),
}

ROLE_NAMES: Dict[AppRole, str] = {
    AppRole.SUPER_ADMIN: "Superadministratör",
    AppRole.ACCOUNT_ADMIN: "Kontoadministratör",
    AppRole.ACCOUNT_USER: "Användare",
}

ROLE_BADGES: Dict[AppRole, str] = {
    AppRole.SUPER_ADMIN: "destructive",
    AppRole.ACCOUNT_ADMIN: "default",
    AppRole.ACCOUNT_USER: "secondary",
}

LOCALE_NAMES = {"sv": "Svenska"}


def field_message(key: str) -> str:
    return FIELD_MESSAGES.get(key, FIELD_MESSAGES["invalid_value"])


def field_messages(errors: Dict[str, str]) -> Dict[str, str]:
    return {name: field_message(key) for name, key in errors.items()}


def _describe(
    error: AuthServiceError,
    table: Dict[AuthErrorKind, Tuple[str, str]],
    fallback: str,
) -> Tuple[str, str]:
    if error.kind in table:
        return table[error.kind]
    if error.kind == AuthErrorKind.UNKNOWN and error.message:
        return GENERIC_ERROR_TITLE, error.message
    return GENERIC_ERROR_TITLE, fallback


def describe_sign_in_error(error: AuthServiceError) -> Tuple[str, str]:
    return _describe(error, SIGN_IN_ERRORS, SIGN_IN_FALLBACK)


def describe_sign_up_error(error: AuthServiceError) -> Tuple[str, str]:
    title, description = _describe(error, SIGN_UP_ERRORS, SIGN_UP_FALLBACK)
    if error.kind == AuthErrorKind.UNKNOWN and title == GENERIC_ERROR_TITLE:
        title = "Registrering misslyckades"
    return title, description


def notice(key: str) -> Tuple[str, str]:
    return NOTICES[key]


def role_name(role: AppRole | str) -> str:
    try:
        return ROLE_NAMES[AppRole(role)]
    except ValueError:
        return str(role)


def role_badge(role: AppRole | str) -> str:
    try:
        return ROLE_BADGES[AppRole(role)]
    except ValueError:
        return "outline"


def locale_name(locale: Optional[str]) -> str:
    return LOCALE_NAMES.get(locale or "", "English")


__all__ = [
    "describe_sign_in_error",
    "describe_sign_up_error",
    "field_message",
    "field_messages",
    "locale_name",
    "notice",
    "role_badge",
    "role_name",
]
