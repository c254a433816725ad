"""Core data contracts and wire schemas for arcrelay."""

from __future__ import annotations

import hashlib
import time
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

HTTP_VERBS = ("GET", "POST", "PUT", "DELETE", "PATCH")


def normalize_verb(verb: Optional[str]) -> str:
    """Return ``verb`` upper-cased, or ``GET`` when empty or unsupported."""
    candidate = str(verb or "").strip().upper()
    return candidate if candidate in HTTP_VERBS else "GET"


class PopBinding(BaseModel):
    """Destination a proof-of-possession token is minted for."""

    model_config = ConfigDict(frozen=True)

    uri: str
    verb: str = "GET"

    @field_validator("verb", mode="before")
    @classmethod
    def _normalize_verb(cls, value: Any) -> str:
        return normalize_verb(value)


class TokenRequest(BaseModel):
    """Scopes plus optional binding; ``cache_key`` identifies the cache slot."""

    model_config = ConfigDict(frozen=True)

    scopes: Tuple[str, ...]
    binding: Optional[PopBinding] = None

    @property
    def cache_key(self) -> str:
        parts = [" ".join(self.scopes)]
        if self.binding is not None:
            parts.extend([self.binding.verb, self.binding.uri])
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class AccessToken(BaseModel):
    """Token as presented to the relay endpoint."""

    value: str
    kind: Literal["plain", "pop"] = "plain"
    expires_on: float


class RelayCredential(BaseModel):
    """Single-use relay material issued by the management API."""

    model_config = ConfigDict(populate_by_name=True)

    namespace_name: str = Field(alias="namespaceName")
    namespace_name_suffix: str = Field(alias="namespaceNameSuffix")
    hybrid_connection_name: str = Field(alias="hybridConnectionName")
    access_key: str = Field(alias="accessKey")
    expires_on: int = Field(alias="expiresOn")


class RelayEndpoint(BaseModel):
    """Time-bounded address of the relay; the unit of renewal."""

    model_config = ConfigDict(frozen=True)

    uri: str
    host_header: str
    port: int
    expires_on: int

    def seconds_remaining(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return int(self.expires_on - now)

    def request_url(self, path: str = "") -> str:
        """Address built from the decomposed host and port."""
        parsed = urlparse(self.uri)
        return f"{parsed.scheme}://{self.host_header}:{self.port}{parsed.path.rstrip('/')}{path}"


class ManagementCredentialResponse(BaseModel):
    """``listCredentials`` response; unknown fields ignored."""

    relay: RelayCredential


class ServiceConfig(BaseModel):
    service: str
    hostname: str


class RegistrationRequest(BaseModel):
    """Body posted to ``/sni/register``."""

    model_config = ConfigDict(populate_by_name=True)

    service_config: ServiceConfig = Field(alias="serviceConfig")
    relay: RelayCredential

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class RegistrationResponse(BaseModel):
    """``/sni/register`` response."""

    model_config = ConfigDict(populate_by_name=True)

    proxy: str
    expires_on: Optional[int] = Field(default=None, alias="expiresOn")


class TokenResponse(BaseModel):
    """OAuth2 token endpoint success response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3599


class PollResponse(RootModel[Union[List[Dict[str, Any]], Dict[str, Any]]]):
    """Opaque JSON object or array of objects returned by the relayed API."""

    def highlights(self, keys: Tuple[str, ...] = ("Server Name", "Server Time")) -> Dict[str, Any]:
        """Collect well-known fields from the payload for status reporting."""
        items = self.root if isinstance(self.root, list) else [self.root]
        found: Dict[str, Any] = {}
        for item in items:
            for key in keys:
                if key in item:
                    found[key] = item[key]
        return found
