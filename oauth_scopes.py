"""
oauth_scopes.py — scope extraction and precedence for remote OAuth clients.

The effective scope for an authorization request is chosen from, in order:
  - a scope the operator configured in static client metadata,
  - a scope echoed back by the server's dynamic client registration,
  - DEFAULT_SCOPE.

Registration responses are loosely typed. Servers express scope as a
space-delimited `scope` or `default_scope` string, or as a `scopes` /
`default_scopes` array; all four are accepted.
"""

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_SCOPE = "openid email profile"


class RegistrationScopes(BaseModel):
    """Scope-bearing fields of a dynamic registration response."""

    model_config = ConfigDict(extra="ignore")

    scope: str | None = None
    default_scope: str | None = None
    scopes: list[str] | None = None
    default_scopes: list[str] | None = None

    @field_validator("scope", "default_scope", mode="before")
    @classmethod
    def string_or_none(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None

    @field_validator("scopes", "default_scopes", mode="before")
    @classmethod
    def string_list_or_none(cls, v: Any) -> list[str] | None:
        if not isinstance(v, (list, tuple)):
            return None
        if not all(isinstance(item, str) for item in v):
            return None
        return list(v)


def _joined(items: list[str] | None) -> str | None:
    return " ".join(items) if items else None


# First non-empty result wins.
_EXTRACTORS: tuple[Callable[[RegistrationScopes], str | None], ...] = (
    lambda r: r.scope,
    lambda r: r.default_scope,
    lambda r: _joined(r.scopes),
    lambda r: _joined(r.default_scopes),
)


def normalize_scope(value: Any) -> str | None:
    """Scope as a space-delimited string; lists of strings are joined.

    Anything else (numbers, mixed lists, empty values) is None.
    """
    if isinstance(value, str):
        return value or None
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return _joined(list(value))
    return None


def extract_scope(registration_response: Mapping[str, Any] | BaseModel) -> str | None:
    """Return the scope a registration response carries, or None.

    None means the response has no usable scope field and the caller
    should fall back to DEFAULT_SCOPE.
    """
    if isinstance(registration_response, BaseModel):
        registration_response = registration_response.model_dump()
    fields = RegistrationScopes.model_validate(dict(registration_response))
    for extractor in _EXTRACTORS:
        value = extractor(fields)
        if value:
            return value
    return None


def resolve_scope(
    static_scope: str | None,
    extracted_scope: str | None,
    default_scope: str = DEFAULT_SCOPE,
) -> str:
    """Pick the effective scope. Empty strings count as not provided."""
    if not default_scope:
        raise ValueError("default_scope must be a non-empty string")
    return static_scope or extracted_scope or default_scope
