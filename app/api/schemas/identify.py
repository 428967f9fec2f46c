"""Identify endpoint schemas."""

import math
from typing import Any

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, field_validator, model_validator

from app.domain.models.identity import ConsolidatedContact, IdentityFragment


class IdentifyRequest(BaseModel):
    """Identify request. Blank and null identifiers count as missing.

    Emails are checked for syntax only and kept exactly as submitted, since
    identity matching compares the stored strings.
    """

    email: str | None = None
    phoneNumber: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("email")
    @classmethod
    def check_email_syntax(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"value is not a valid email address: {e}") from e
        return value

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def coerce_phone_number(cls, value: Any) -> Any:
        # Numeric phone numbers are stored as their decimal text
        if isinstance(value, bool):
            raise ValueError("phoneNumber must be a string or a number")
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("phoneNumber must be a finite number")
            if value.is_integer() and abs(value) < 1e21:
                return str(int(value))
            return repr(value)
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def require_identifier(self) -> "IdentifyRequest":
        if not self.email and not self.phoneNumber:
            raise ValueError("At least one of email or phoneNumber must be provided")
        return self

    def to_fragment(self) -> IdentityFragment:
        return IdentityFragment(email=self.email, phone_number=self.phoneNumber)


class ConsolidatedContactResponse(BaseModel):
    """Consolidated identity view."""

    primaryContatctId: int
    emails: list[str]
    phoneNumbers: list[str]
    secondaryContactIds: list[int]


class IdentifyResponse(BaseModel):
    """Identify response."""

    contact: ConsolidatedContactResponse

    @classmethod
    def from_consolidated(cls, consolidated: ConsolidatedContact) -> "IdentifyResponse":
        return cls(contact=ConsolidatedContactResponse(**consolidated.to_response()))


class ErrorResponse(BaseModel):
    """Error body returned for rejected or failed requests."""

    error: str
    details: list[dict[str, Any]] | None = None
