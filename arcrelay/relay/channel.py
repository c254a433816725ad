"""HTTP channels used against the relay.

Two channels exist and are never shared:

* the provisioning channel talks to the registration proxy and accepts any
  server certificate, since that leg normally terminates at a local helper;
* the :class:`PinnedChannel` carries the polled traffic and accepts a TLS peer
  only when its certificate subject names the expected server identity.
  The system trust store is never consulted for it.
"""

from __future__ import annotations

import functools
import logging
from typing import Dict, Optional

import requests
from cryptography import x509
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPSConnection
from urllib3.connectionpool import HTTPSConnectionPool

from ..contracts import PollResponse, RelayEndpoint
from ..errors import ChannelFault, PinningError

logger = logging.getLogger(__name__)


def common_name(subject: Optional[str]) -> Optional[str]:
    """Return the last ``=``-delimited field of ``subject``."""
    if not subject or "=" not in subject:
        return None
    return subject.split("=")[-1].strip()


def certificate_matches(subject: Optional[str], expected_identity: str) -> bool:
    """Accept only a subject whose common name equals ``expected_identity``."""
    if not expected_identity:
        return False
    return common_name(subject) == expected_identity


def subject_from_der(der: Optional[bytes]) -> Optional[str]:
    """Render the subject of a DER certificate in encoded RDN order."""
    if not der:
        return None
    try:
        certificate = x509.load_der_x509_certificate(der)
    except ValueError:
        return None
    parts = [
        f"{attribute.rfc4514_attribute_name}={attribute.value}"
        for attribute in certificate.subject
    ]
    return ", ".join(parts) or None


class PinnedHTTPSConnection(HTTPSConnection):
    """HTTPS connection that checks the peer identity right after the handshake."""

    def __init__(self, *args, expected_identity: str = "", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.expected_identity = expected_identity

    def connect(self) -> None:
        super().connect()
        der = self.sock.getpeercert(binary_form=True) if self.sock else None
        subject = subject_from_der(der)
        if not certificate_matches(subject, self.expected_identity):
            self.close()
            raise PinningError(
                f"Server certificate subject {subject!r} does not match "
                f"expected identity {self.expected_identity!r}"
            )
        self.is_verified = True


class PinnedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = PinnedHTTPSConnection


class PinnedAdapter(HTTPAdapter):
    """Transport adapter installing :class:`PinnedHTTPSConnection` for https."""

    def __init__(self, expected_identity: str, **kwargs) -> None:
        self.expected_identity = expected_identity
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            **self.poolmanager.pool_classes_by_scheme,
            "https": functools.partial(
                PinnedHTTPSConnectionPool, expected_identity=self.expected_identity
            ),
        }


def provisioning_session() -> requests.Session:
    """Session for the registration leg; trusts any certificate."""
    session = requests.Session()
    session.verify = False
    return session


def pinned_session(expected_identity: str) -> requests.Session:
    """Session whose only trust decision is the certificate pin."""
    session = requests.Session()
    # Environment proxies would tunnel through a different pool manager.
    session.trust_env = False
    # Chain validation is replaced by the pin in PinnedHTTPSConnection.connect.
    session.verify = False
    session.mount("https://", PinnedAdapter(expected_identity))
    return session


class PinnedChannel:
    """Issues polls against a relay endpoint over a pinned session."""

    def __init__(
        self,
        expected_identity: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.expected_identity = expected_identity
        self._session = session or pinned_session(expected_identity)
        self._timeout = timeout

    def poll(
        self, endpoint: RelayEndpoint, headers: Dict[str, str], path: str = ""
    ) -> PollResponse:
        """GET the relayed API once.

        Raises:
            ChannelFault: Non-success status, transport error, pin mismatch or
                a payload that is not a JSON object or array of objects.
        """
        url = endpoint.request_url(path)
        if not url.startswith("https://"):
            raise ChannelFault(f"Refusing to poll a non-TLS endpoint: {url}")
        request_headers = {
            "Accept": "application/json",
            **headers,
            "Host": endpoint.host_header,
        }
        try:
            resp = self._session.get(url, headers=request_headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ChannelFault(f"Relay request failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            logger.debug("Relay rejected call: %s %s", resp.status_code, resp.text)
            raise ChannelFault(
                f"Failed to call the relayed API: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        try:
            return PollResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise ChannelFault(
                f"Unexpected relay payload: {exc}",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

    def close(self) -> None:
        self._session.close()
