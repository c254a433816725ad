"""Two-step relay provisioning: credentials, then a registered endpoint."""

from __future__ import annotations

import logging
from typing import Optional

import requests
from pydantic import ValidationError

from ..auth.tokens import TokenProvider
from ..config import ArcRelayConfig
from ..contracts import (
    ManagementCredentialResponse,
    RegistrationRequest,
    RegistrationResponse,
    RelayCredential,
    RelayEndpoint,
    ServiceConfig,
)
from ..errors import CredentialDenied, RegistrationFailed
from ..observability import LoggingObserver, Observer
from .channel import provisioning_session
from .endpoint import parse_endpoint

logger = logging.getLogger(__name__)


class RelayProvisioner:
    """Obtains a fresh, time-bounded relay endpoint.

    Every call to :meth:`provision` consumes a newly issued
    :class:`RelayCredential`; credentials are never reused, so the operation
    is not idempotent.
    """

    def __init__(
        self,
        config: ArcRelayConfig,
        token_provider: TokenProvider,
        management_http: Optional[requests.Session] = None,
        registration_http: Optional[requests.Session] = None,
        observer: Optional[Observer] = None,
    ) -> None:
        self._config = config
        self._tokens = token_provider
        self._management_http = management_http or requests.Session()
        self._registration_http = registration_http or provisioning_session()
        self._observer = observer or LoggingObserver(logger)
        self._timeout = config.request_timeout

    def provision(self) -> RelayEndpoint:
        """Fetch relay credentials and exchange them for an endpoint."""
        credential = self.fetch_credential()
        return self.register(credential)

    def fetch_credential(self) -> RelayCredential:
        token = self._tokens.acquire([self._config.management_scope])
        try:
            resp = self._management_http.post(
                self._config.credentials_url,
                data="",
                headers={
                    "Authorization": f"Bearer {token.value}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise CredentialDenied(f"Error getting Relay Credentials: {exc}") from exc

        if resp.status_code != 200:
            raise CredentialDenied(
                f"Error getting Relay Credentials: {resp.text}",
                body=resp.text,
                status_code=resp.status_code,
            )
        try:
            credential = ManagementCredentialResponse.model_validate(resp.json()).relay
        except (ValueError, ValidationError) as exc:
            raise CredentialDenied(
                f"Malformed relay credentials: {exc}",
                body=resp.text,
                status_code=resp.status_code,
            ) from exc

        self._observer.event(
            logging.INFO,
            "Relay credentials issued",
            namespace=credential.namespace_name,
            connection=credential.hybrid_connection_name,
            expires_on=credential.expires_on,
        )
        return credential

    def register(self, credential: RelayCredential) -> RelayEndpoint:
        body = RegistrationRequest(
            service_config=ServiceConfig(
                service=self._config.arcee_api_url,
                hostname=self._config.relay_hostname,
            ),
            relay=credential,
        )
        try:
            resp = self._registration_http.post(
                self._config.registration_url,
                json=body.to_payload(),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise RegistrationFailed(
                f"Error getting Relay URL from Credentials: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise RegistrationFailed(
                f"Error getting Relay URL from Credentials: {resp.text}",
                body=resp.text,
                status_code=resp.status_code,
            )
        try:
            registration = RegistrationResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise RegistrationFailed(
                f"Malformed registration response: {exc}",
                body=resp.text,
                status_code=resp.status_code,
            ) from exc

        expires_on = credential.expires_on
        if registration.expires_on is not None:
            expires_on = min(expires_on, registration.expires_on)
        endpoint = parse_endpoint(registration.proxy, expires_on)

        self._observer.event(
            logging.INFO,
            "Relay endpoint provisioned",
            host=endpoint.host_header,
            port=endpoint.port,
            expires_on=endpoint.expires_on,
        )
        return endpoint
