"""Form schemas validated before any call leaves the portal."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, ClassVar, Dict, Generic, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, EmailStr, Field, StringConstraints, ValidationError, model_validator
from pydantic_core import PydanticCustomError

PASSWORD_MIN_LENGTH = 6
NAME_MIN_LENGTH = 2

TICKET_TYPES = ("Support", "Economy", "Other")

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=NAME_MIN_LENGTH)]
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PortalForm(BaseModel):
    # Maps a field name to the message key shown for any error on it.
    field_errors: ClassVar[Dict[str, str]] = {}


class SignInForm(PortalForm):
    field_errors: ClassVar[Dict[str, str]] = {
        "email": "invalid_email",
        "password": "password_too_short",
    }

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)


class SignUpForm(PortalForm):
    field_errors: ClassVar[Dict[str, str]] = {
        "email": "invalid_email",
        "password": "password_too_short",
        "confirm_password": "confirm_password_required",
        "first_name": "first_name_required",
        "last_name": "last_name_required",
    }

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    first_name: Name
    last_name: Name

    @model_validator(mode="after")
    def _passwords_match(self) -> "SignUpForm":
        if self.password != self.confirm_password:
            raise PydanticCustomError("password_mismatch", "Passwords do not match")
        return self

    def metadata(self) -> Dict[str, str]:
        return {"first_name": self.first_name, "last_name": self.last_name}


class TicketForm(PortalForm):
    field_errors: ClassVar[Dict[str, str]] = {
        "subject": "subject_required",
        "type": "invalid_ticket_type",
        "description": "description_required",
    }

    subject: RequiredText
    type: Literal["Support", "Economy", "Other"] = "Support"
    description: RequiredText


FormT = TypeVar("FormT", bound=PortalForm)


@dataclass
class FormResult(Generic[FormT]):
    """Outcome of validating submitted form data."""

    form: Optional[FormT]
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.form is not None and not self.errors


def validate_form(model: Type[FormT], data: Mapping[str, object]) -> FormResult[FormT]:
    """Validate raw form data, returning per-field message keys on failure."""
    try:
        form = model.model_validate(dict(data))
    except ValidationError as exc:
        errors: Dict[str, str] = {}
        for error in exc.errors():
            location = error.get("loc") or ()
            if error.get("type") == "password_mismatch":
                errors.setdefault("confirm_password", "password_mismatch")
                continue
            if not location:
                continue
            name = str(location[0])
            errors.setdefault(name, model.field_errors.get(name, "invalid_value"))
        return FormResult(form=None, errors=errors)
    return FormResult(form=form)


__all__ = [
    "FormResult",
    "NAME_MIN_LENGTH",
    "PASSWORD_MIN_LENGTH",
    "SignInForm",
    "SignUpForm",
    "TICKET_TYPES",
    "TicketForm",
    "validate_form",
]
