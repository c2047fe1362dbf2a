"""Connection descriptor for the remote data service."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class AuthType(StrEnum):
    """Supported authentication modes."""

    ACCESS_TOKEN = "accesstoken"
    CLIENT_SECRET = "clientsecret"


class ConnectionDescriptor(BaseModel):
    """Where the service lives and how to authenticate against it."""

    model_config = ConfigDict(frozen=True)

    url: str
    auth_type: AuthType
    access_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    tenant_id: str | None = None
    authority: str = "https://login.microsoftonline.com"

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Url must be an https endpoint; the trailing slash is dropped."""
        if not value.startswith("https://"):
            msg = "url must start with https://"
            raise ValueError(msg)
        return value.rstrip("/")

    @property
    def scope(self) -> str:
        return f"{self.url}/.default"
