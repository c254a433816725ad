"""Fault taxonomy for the relay session manager."""

from __future__ import annotations

import ssl
from typing import Optional


class ArcRelayError(Exception):
    """Base class for all arcrelay faults."""


class ConfigFault(ArcRelayError):
    """Static configuration is missing or invalid. Never retried."""


class AuthFault(ArcRelayError):
    """Token acquisition failed."""


class InvalidScope(AuthFault):
    """Scope is not of the form ``<resource>/.default``."""


class InvalidBinding(AuthFault):
    """Proof-of-possession binding has a relative or empty URI."""


class ServiceUnavailable(AuthFault):
    """Authority unreachable or answering with a server error."""


class Denied(AuthFault):
    """Application credential rejected by the authority."""


class ProvisionFault(ArcRelayError):
    """Relay provisioning failed; carries the remote response for diagnostics."""

    def __init__(
        self,
        message: str,
        body: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.body = body
        self.status_code = status_code


class CredentialDenied(ProvisionFault):
    """Management API refused to issue relay credentials."""


class RegistrationFailed(ProvisionFault):
    """Proxy registration rejected the credentials or could not be reached."""


class EndpointMalformed(ProvisionFault):
    """Registration returned an endpoint URL that cannot be decomposed."""


class ChannelFault(ArcRelayError):
    """A poll against the relay endpoint failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PinningError(ssl.SSLError):
    """Presented server certificate does not name the expected identity."""
