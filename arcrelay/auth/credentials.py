"""Application credentials presented to the authority."""

from __future__ import annotations

import base64
import re
import time
import uuid
from pathlib import Path
from typing import Dict, Optional, Union

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from ..config import ArcRelayConfig
from ..errors import ConfigFault

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
PEM_BLOCK = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----.+?-----END \1-----", re.S)


def _private_key_block(pem: bytes) -> bytes:
    for match in PEM_BLOCK.finditer(pem):
        if match.group(1).endswith(b"PRIVATE KEY"):
            return match.group(0)
    return pem


class ClientSecret:
    """Shared application password."""

    def __init__(self, client_id: str, secret: str) -> None:
        self.client_id = client_id
        self._secret = secret

    def form_fields(self, token_endpoint: str) -> Dict[str, str]:
        return {"client_id": self.client_id, "client_secret": self._secret}


class ClientCertificate:
    """Certificate registered with the application; signs a client assertion."""

    def __init__(self, client_id: str, pem: bytes, password: Optional[bytes] = None) -> None:
        self.client_id = client_id
        try:
            self._private_key = serialization.load_pem_private_key(
                _private_key_block(pem), password=password
            )
            certificate = x509.load_pem_x509_certificate(pem)
        except (TypeError, ValueError) as exc:
            raise ConfigFault(f"Unable to load client certificate: {exc}") from exc
        thumbprint = certificate.fingerprint(hashes.SHA1())
        self.x5t = base64.urlsafe_b64encode(thumbprint).rstrip(b"=").decode("ascii")

    @classmethod
    def from_file(cls, client_id: str, path: Union[str, Path]) -> "ClientCertificate":
        try:
            pem = Path(path).read_bytes()
        except OSError as exc:
            raise ConfigFault(f"Unable to read client certificate {path}: {exc}") from exc
        return cls(client_id, pem)

    def assertion(self, token_endpoint: str, now: Optional[float] = None) -> str:
        issued = int(time.time() if now is None else now)
        claims = {
            "aud": token_endpoint,
            "iss": self.client_id,
            "sub": self.client_id,
            "jti": str(uuid.uuid4()),
            "nbf": issued,
            "exp": issued + 600,
        }
        return jwt.encode(
            claims, self._private_key, algorithm="RS256", headers={"x5t": self.x5t}
        )

    def form_fields(self, token_endpoint: str) -> Dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self.assertion(token_endpoint),
        }


ClientCredential = Union[ClientSecret, ClientCertificate]


def load_client_credential(config: ArcRelayConfig) -> ClientCredential:
    """Build the credential kind selected by ``config``."""
    if config.client_certificate_path:
        return ClientCertificate.from_file(config.client_id, config.client_certificate_path)
    return ClientSecret(config.client_id, config.client_secret or "")
