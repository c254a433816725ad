from __future__ import annotations

import json
import os
from typing import Optional
from urllib.parse import urlparse

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from .errors import ConfigFault

DEFAULT_CONFIG_PATH = "appsettings.json"

MANAGEMENT_CREDENTIALS_PATH = (
    "/subscriptions/{subscription}/resourceGroups/{resource_group}"
    "/providers/Microsoft.HybridCompute/machines/{machine}"
    "/providers/Microsoft.HybridConnectivity/endpoints/default/listCredentials"
)
MACHINE_RESOURCE_PATH = (
    "/subscriptions/{subscription}/resourceGroups/{resource_group}"
    "/providers/Microsoft.HybridCompute/machines/{machine}"
)
RELAY_HOSTNAME_FQDN = "{principal_id}.{location}.arc.waconazure.com"
_CREDENTIAL_KEYS = ("client_secret", "ClientSecret", "client_certificate_path", "CertificatePath")


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class RetrySettings(BaseModel):
    """Backoff applied between failed session generations."""

    max_attempts: Optional[int] = None
    base: float = 1.5
    cap: float = 60.0
    jitter: float = 0.5


class ArcRelayConfig(BaseModel):
    """Top-level configuration model.

    Accepts snake_case keys as well as the PascalCase keys of an
    ``appsettings.json`` file.
    """

    instance: str = Field(
        default="https://login.microsoftonline.com/{0}",
        validation_alias=_alias("instance", "Instance"),
    )
    tenant_id: str = Field(validation_alias=_alias("tenant_id", "TenantId"))
    client_id: str = Field(validation_alias=_alias("client_id", "ClientId"))
    client_secret: Optional[str] = Field(
        default=None, validation_alias=_alias("client_secret", "ClientSecret")
    )
    client_certificate_path: Optional[str] = Field(
        default=None,
        validation_alias=_alias("client_certificate_path", "CertificatePath"),
    )

    subscription_id: str = Field(
        validation_alias=_alias("subscription_id", "SubscriptionId")
    )
    resource_group: str = Field(
        validation_alias=_alias("resource_group", "ResourceGroup")
    )
    arc_server_name: str = Field(
        validation_alias=_alias("arc_server_name", "ArcServerName")
    )
    arc_server_location: str = Field(
        validation_alias=_alias("arc_server_location", "ArcServerLocation")
    )
    arc_server_client_id: str = Field(
        validation_alias=_alias("arc_server_client_id", "ArcServerClientId")
    )
    arc_server_principal_id: str = Field(
        validation_alias=_alias("arc_server_principal_id", "ArcServerprincipalId")
    )
    arcee_api_url: str = Field(validation_alias=_alias("arcee_api_url", "ArceeApiUrl"))
    path_to_proxy: Optional[str] = Field(
        default=None, validation_alias=_alias("path_to_proxy", "PathToProxy")
    )
    authorization_scope: Optional[str] = None

    use_local_proxy: bool = False
    local_hostname: str = "localhost"
    local_proxy_url: str = "https://localhost:47011"
    proxy_base_url: str = "https://control.{location}.arc.wac.azure.com:47011"
    management_endpoint: str = "https://management.azure.com"
    hybrid_connectivity_api_version: str = "2021-10-06-preview"
    sni_api_version: str = "2022-05-01"

    poll_path: str = ""
    request_timeout: float = 30.0
    renew_before_seconds: int = 0
    retry: RetrySettings = RetrySettings()

    @model_validator(mode="after")
    def _check_credentials(self) -> "ArcRelayConfig":
        if bool(self.client_secret) == bool(self.client_certificate_path):
            raise ValueError(
                "exactly one of client_secret or client_certificate_path is required"
            )
        parsed = urlparse(self.authority)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ValueError(f"authority is not an absolute https URL: {self.authority}")
        return self

    @property
    def authority(self) -> str:
        return self.instance.format(self.tenant_id).rstrip("/")

    @property
    def management_scope(self) -> str:
        return f"{self.management_endpoint.rstrip('/')}/.default"

    @property
    def pop_scope(self) -> str:
        return f"{self.arc_server_client_id}/.default"

    @property
    def expected_server_identity(self) -> str:
        return MACHINE_RESOURCE_PATH.format(
            subscription=self.subscription_id,
            resource_group=self.resource_group,
            machine=self.arc_server_name,
        )

    @property
    def credentials_url(self) -> str:
        path = MANAGEMENT_CREDENTIALS_PATH.format(
            subscription=self.subscription_id,
            resource_group=self.resource_group,
            machine=self.arc_server_name,
        )
        return (
            f"{self.management_endpoint.rstrip('/')}{path}"
            f"?api-version={self.hybrid_connectivity_api_version}"
        )

    @property
    def registration_url(self) -> str:
        base = (
            self.local_proxy_url
            if self.use_local_proxy
            else self.proxy_base_url.format(location=self.arc_server_location)
        )
        return f"{base.rstrip('/')}/sni/register?api-version={self.sni_api_version}"

    @property
    def relay_hostname(self) -> str:
        if self.use_local_proxy:
            return self.local_hostname
        return RELAY_HOSTNAME_FQDN.format(
            principal_id=self.arc_server_principal_id,
            location=self.arc_server_location,
        )


def load_config(path: Optional[str] = None) -> ArcRelayConfig:
    """Load configuration from a YAML or JSON file.

    Args:
        path: Optional path to config file. Falls back to ARCRELAY_CONFIG env
            variable or 'appsettings.json' in the current directory.

    Raises:
        ConfigFault: The file is missing, unreadable or fails validation.
    """

    config_path = path or os.getenv("ARCRELAY_CONFIG", DEFAULT_CONFIG_PATH)
    if not os.path.exists(config_path):
        raise ConfigFault(f"Configuration file not found: {config_path}")
    try:
        with open(config_path, encoding="utf-8-sig") as f:
            if config_path.endswith(".json"):
                data = json.load(f) or {}
            else:
                data = yaml.safe_load(f) or {}
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigFault(f"Unable to read configuration {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigFault(f"Configuration {config_path} must be a mapping")

    env_secret = os.getenv("ARCRELAY_CLIENT_SECRET")
    if env_secret:
        data = {k: v for k, v in data.items() if k not in _CREDENTIAL_KEYS}
        data["client_secret"] = env_secret

    try:
        return ArcRelayConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigFault(f"Invalid configuration {config_path}: {exc}") from exc
