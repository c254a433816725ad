"""Proof-of-possession keys and signed HTTP requests.

A PoP access token is issued against the thumbprint of a client-held key
(``req_cnf``).  Before use it is wrapped in a Signed HTTP Request (SHR): a JWT
signed with that key which pins the access token to one HTTP verb and URI.
"""

from __future__ import annotations

import base64
import hashlib
import json
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from ..contracts import PopBinding


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _uri_parts(uri: str) -> tuple[str, str]:
    parsed = urlparse(uri)
    return parsed.netloc.lower(), parsed.path or "/"


class PopKey:
    """RSA key pair a PoP token is bound to."""

    def __init__(self, private_key: Optional[rsa.RSAPrivateKey] = None) -> None:
        self._private_key = private_key or rsa.generate_private_key(
            public_exponent=65537, key_size=2048
        )
        public_jwk = json.loads(
            jwt.algorithms.RSAAlgorithm.to_jwk(self._private_key.public_key())
        )
        self.public_jwk: Dict[str, Any] = {
            "kty": public_jwk["kty"],
            "n": public_jwk["n"],
            "e": public_jwk["e"],
        }
        self.thumbprint = self._thumbprint(self.public_jwk)

    @staticmethod
    def _thumbprint(jwk: Dict[str, Any]) -> str:
        # RFC 7638: required members, lexicographic order, no whitespace
        canonical = json.dumps(
            {"e": jwk["e"], "kty": jwk["kty"], "n": jwk["n"]},
            separators=(",", ":"),
            sort_keys=True,
        )
        return _b64url(hashlib.sha256(canonical.encode("utf-8")).digest())

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        return self._private_key

    @property
    def req_cnf(self) -> str:
        """Value sent to the authority to request a token bound to this key."""
        return _b64url(json.dumps({"kid": self.thumbprint}).encode("utf-8"))


def sign_http_request(
    access_token: str,
    key: PopKey,
    binding: PopBinding,
    now: Optional[float] = None,
) -> str:
    """Wrap ``access_token`` in a SHR bound to ``binding``."""
    host, path = _uri_parts(binding.uri)
    claims = {
        "at": access_token,
        "ts": int(time.time() if now is None else now),
        "m": binding.verb,
        "u": host,
        "p": path,
        "nonce": uuid.uuid4().hex,
        "cnf": {"jwk": {**key.public_jwk, "kid": key.thumbprint}},
    }
    return jwt.encode(
        claims,
        key.private_key,
        algorithm="RS256",
        headers={"typ": "pop", "kid": key.thumbprint},
    )


def verify_signed_request(shr: str, method: str, uri: str) -> bool:
    """Return ``True`` when ``shr`` is validly signed for ``method`` and ``uri``."""
    try:
        unverified = jwt.decode(shr, options={"verify_signature": False})
        jwk = unverified["cnf"]["jwk"]
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
        claims = jwt.decode(shr, public_key, algorithms=["RS256"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        return False
    if jwt.get_unverified_header(shr).get("kid") != PopKey._thumbprint(jwk):
        return False
    host, path = _uri_parts(uri)
    return (
        claims.get("m") == method.strip().upper()
        and claims.get("u") == host
        and claims.get("p") == path
    )
