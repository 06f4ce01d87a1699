"""
Registry credentials sent with image pull and push requests.
"""
import base64
import json
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError


class PasswordAuth(BaseModel):
    """
    Username/password credentials for a registry.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None
    server_address: Optional[str] = None

    def to_header_payload(self) -> dict:
        payload = {
            "username": self.username,
            "password": self.password,
            "email": self.email,
            "serveraddress": self.server_address,
        }
        return {k: v for k, v in payload.items() if v is not None}


class TokenAuth(BaseModel):
    """
    Identity token obtained from a previous registry login.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    identity_token: str = Field(min_length=1)

    @field_validator("identity_token")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("identity_token must be non-empty")
        return value

    def to_header_payload(self) -> dict:
        return {"identitytoken": self.identity_token}


RegistryAuth = Union[PasswordAuth, TokenAuth]


def resolve_auth(auth_password: Union[PasswordAuth, Mapping[str, Any], None] = None,
                 auth_token: Union[TokenAuth, Mapping[str, Any], None] = None) -> Optional[RegistryAuth]:
    """
    Validates the two mutually exclusive credential forms.

    :param auth_password: PasswordAuth or a dict with username/password/email/server_address.
    :param auth_token: TokenAuth or a dict with identity_token.
    :return: The validated credentials, or None when neither was given.
    :raises ValidationError: If both forms are given or either has an unexpected shape.
    """
    if auth_password is not None and auth_token is not None:
        raise ValidationError(
            "Got both auth_password and auth_token. Only one of these options is allowed"
        )
    try:
        if auth_password is not None:
            if isinstance(auth_password, PasswordAuth):
                return auth_password
            return PasswordAuth.model_validate(dict(auth_password))
        if auth_token is not None:
            if isinstance(auth_token, TokenAuth):
                return auth_token
            return TokenAuth.model_validate(dict(auth_token))
    except (PydanticValidationError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid registry credentials: {e}") from e
    return None


def encode_auth_header(auth: Optional[RegistryAuth]) -> str:
    """Base64url-encoded JSON for the X-Registry-Auth header."""
    payload = auth.to_header_payload() if auth is not None else {}
    raw = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")
