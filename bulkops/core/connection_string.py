"""Parsing of `Key=Value;` connection strings into connection descriptors."""

from __future__ import annotations

from pydantic import ValidationError

from bulkops.core.errors import ServiceConnectionError
from bulkops.models.connection import AuthType, ConnectionDescriptor

# Accepted spellings for each descriptor field (compared lowercase)
_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "url": ("url", "serviceuri", "service uri", "server"),
    "auth_type": ("authtype", "auth type"),
    "access_token": ("accesstoken", "token"),
    "client_id": ("clientid", "appid", "client id"),
    "client_secret": ("clientsecret", "secret", "client secret"),
    "tenant_id": ("tenantid", "tenant id", "tenant"),
    "authority": ("authority",),
}


def split_connection_string(connection_string: str) -> dict[str, str]:
    """Split a connection string into a lowercase-key dict.

    Values may contain '=' (base64 secrets); only the first '=' separates.
    Empty segments are ignored.
    """
    pairs: dict[str, str] = {}
    for segment in connection_string.split(";"):
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            msg = f"malformed connection string segment: {segment.strip()!r}"
            raise ServiceConnectionError(msg)
        pairs[key.strip().lower()] = value.strip().strip("'\"")
    return pairs


def parse_connection_string(connection_string: str) -> ConnectionDescriptor:
    """Build a ConnectionDescriptor, raising ServiceConnectionError when incomplete."""
    if not connection_string or not connection_string.strip():
        msg = "connection string is empty"
        raise ServiceConnectionError(msg)

    pairs = split_connection_string(connection_string)
    values: dict[str, str] = {}
    for field_name, aliases in _KEY_ALIASES.items():
        for alias in aliases:
            if alias in pairs:
                values[field_name] = pairs[alias]
                break

    if "url" not in values:
        msg = "connection string has no Url"
        raise ServiceConnectionError(msg)

    auth_type = values.pop("auth_type", "").replace(" ", "").lower()
    if not auth_type:
        auth_type = AuthType.CLIENT_SECRET if "client_secret" in values else AuthType.ACCESS_TOKEN

    if auth_type == AuthType.CLIENT_SECRET:
        missing = [name for name in ("client_id", "client_secret", "tenant_id") if name not in values]
    elif auth_type == AuthType.ACCESS_TOKEN:
        missing = [] if "access_token" in values else ["access_token"]
    else:
        msg = f"unsupported AuthType: {auth_type}"
        raise ServiceConnectionError(msg)

    if missing:
        msg = f"connection string is missing: {', '.join(missing)}"
        raise ServiceConnectionError(msg)

    try:
        return ConnectionDescriptor(auth_type=AuthType(auth_type), **values)
    except ValidationError as exc:
        msg = f"invalid connection string: {exc.errors()[0]['msg']}"
        raise ServiceConnectionError(msg) from exc
