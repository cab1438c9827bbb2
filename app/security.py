"""
API-key authentication and permission checks.

Keys are configured as ``key:perm|perm`` pairs and kept only as SHA-256
digests. Every permission must be granted explicitly; there is no wildcard.
"""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import APIKeyHeader

from app.config import config
from app.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class Principal:
    key_id: str
    permissions: frozenset

    def has_any(self, *permissions: str) -> bool:
        return any(p in self.permissions for p in permissions)


class IdentityProvider(ABC):
    @abstractmethod
    def authenticate(self, api_key: str) -> Optional[Principal]:
        """Returns the principal for a credential, or None if it is not recognised."""


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


class ApiKeyIdentityProvider(IdentityProvider):
    def __init__(self, keys: dict[str, set[str]]):
        self._entries = [
            (_digest(key), Principal(key_id=_digest(key).hex()[:12], permissions=frozenset(perms)))
            for key, perms in keys.items()
        ]

    @classmethod
    def from_string(cls, raw: str) -> "ApiKeyIdentityProvider":
        """Parses ``key1:read|compute,key2:read``."""
        keys = {}
        for entry in (raw or "").split(","):
            entry = entry.strip()
            if not entry:
                continue
            key, _, perms = entry.partition(":")
            granted = {p.strip() for p in perms.split("|") if p.strip()}
            unknown = granted - set(config.PERMISSIONS)
            if unknown:
                logger.warning(f"Ignoring unknown permissions {sorted(unknown)} in API_KEYS")
            keys[key.strip()] = granted & set(config.PERMISSIONS)
        if not keys:
            logger.warning("API_KEYS not provided. All authenticated endpoints will reject requests.")
        return cls(keys)

    def authenticate(self, api_key: str) -> Optional[Principal]:
        candidate = _digest(api_key)
        match = None
        # compare against every entry so timing does not reveal which key matched
        for digest, principal in self._entries:
            if hmac.compare_digest(digest, candidate):
                match = principal
        return match


identity_provider = ApiKeyIdentityProvider.from_string(config.API_KEYS)


def get_identity_provider() -> IdentityProvider:
    return identity_provider


def require_permission(*permissions: str):
    """Dependency that authenticates the caller and requires at least one of the permissions."""

    def dependency(
        api_key: Optional[str] = Security(api_key_header),
        provider: IdentityProvider = Depends(get_identity_provider),
    ) -> Principal:
        if not api_key:
            raise AuthenticationError("No API key provided")
        principal = provider.authenticate(api_key)
        if principal is None:
            raise AuthenticationError("Invalid API key")
        if not principal.has_any(*permissions):
            raise AuthorizationError(f"Required permissions: {', '.join(permissions)}")
        logger.debug(f"Caller {principal.key_id} authorized for {permissions}")
        return principal

    return dependency
