"""Client-credential token acquisition with an in-memory cache."""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Dict, Optional, Sequence
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, ValidationError

from ..contracts import AccessToken, PopBinding, TokenRequest, TokenResponse
from ..errors import AuthFault, Denied, InvalidBinding, InvalidScope, ServiceUnavailable
from ..observability import LoggingObserver, Observer
from .credentials import ClientCredential
from .pop import PopKey, sign_http_request

logger = logging.getLogger(__name__)

SCOPE_PATTERN = re.compile(r"^\S+/\.default$")
# Cached tokens are treated as expired this many seconds early.
EXPIRY_SKEW_SECONDS = 300


class _CachedToken(BaseModel):
    raw: str
    expires_on: float


class TokenProvider:
    """Exchanges the application credential for access tokens.

    Two kinds are issued: plain bearer tokens and proof-of-possession tokens
    bound to a destination URI and HTTP verb.  Raw tokens from the authority
    are cached per :class:`TokenRequest` until shortly before they expire.
    """

    def __init__(
        self,
        authority: str,
        credential: ClientCredential,
        http: Optional[requests.Session] = None,
        observer: Optional[Observer] = None,
        pop_key: Optional[PopKey] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 30.0,
    ) -> None:
        self.token_endpoint = f"{authority.rstrip('/')}/oauth2/v2.0/token"
        self._credential = credential
        self._http = http or requests.Session()
        self._observer = observer or LoggingObserver(logger)
        self._pop_key = pop_key
        self._clock = clock
        self._timeout = timeout
        self._cache: Dict[str, _CachedToken] = {}

    @property
    def pop_key(self) -> PopKey:
        if self._pop_key is None:
            self._pop_key = PopKey()
        return self._pop_key

    def clear(self) -> None:
        """Drop every cached token."""
        self._cache.clear()

    def acquire(
        self, scopes: Sequence[str], binding: Optional[PopBinding] = None
    ) -> AccessToken:
        """Return a token for ``scopes``, bound to ``binding`` when given.

        Raises:
            InvalidScope: A scope is not of the form ``<resource>/.default``.
            InvalidBinding: The binding URI is not absolute.
            ServiceUnavailable: The authority is unreachable or failing.
            Denied: The application credential was rejected.
        """
        request = self._build_request(scopes, binding)
        now = self._clock()
        cached = self._cache.get(request.cache_key)
        if cached is None or now >= cached.expires_on - EXPIRY_SKEW_SECONDS:
            try:
                cached = self._exchange(request, now)
            except AuthFault as exc:
                self._observer.error(
                    "Token acquisition failed", exc, scopes=" ".join(request.scopes)
                )
                raise
            self._cache[request.cache_key] = cached
            self._observer.event(
                logging.INFO,
                "New token acquired",
                scopes=" ".join(request.scopes),
                kind="pop" if binding is not None else "plain",
            )

        if request.binding is None:
            return AccessToken(value=cached.raw, kind="plain", expires_on=cached.expires_on)
        shr = sign_http_request(cached.raw, self.pop_key, request.binding, now=now)
        return AccessToken(value=shr, kind="pop", expires_on=cached.expires_on)

    def _build_request(
        self, scopes: Sequence[str], binding: Optional[PopBinding]
    ) -> TokenRequest:
        if isinstance(scopes, str):
            scopes = [scopes]
        if not scopes:
            raise InvalidScope("At least one scope is required")
        for scope in scopes:
            if not isinstance(scope, str) or not SCOPE_PATTERN.match(scope):
                raise InvalidScope(
                    f"Invalid scope {scope!r}; expected the form '<resource>/.default'"
                )
        if binding is not None:
            parsed = urlparse(binding.uri)
            if not parsed.scheme or not parsed.netloc:
                raise InvalidBinding(f"PoP binding URI must be absolute: {binding.uri!r}")
        return TokenRequest(scopes=tuple(scopes), binding=binding)

    def _exchange(self, request: TokenRequest, now: float) -> _CachedToken:
        form = {
            "grant_type": "client_credentials",
            "scope": " ".join(request.scopes),
            **self._credential.form_fields(self.token_endpoint),
        }
        if request.binding is not None:
            form["token_type"] = "pop"
            form["req_cnf"] = self.pop_key.req_cnf

        try:
            resp = self._http.post(self.token_endpoint, data=form, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ServiceUnavailable(f"Authority unreachable: {exc}") from exc

        if resp.status_code >= 500:
            raise ServiceUnavailable(
                f"Authority returned {resp.status_code}: {resp.text}"
            )
        if resp.status_code != 200:
            raise self._classify_error(resp)

        try:
            token = TokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise ServiceUnavailable(f"Malformed token response: {exc}") from exc
        return _CachedToken(raw=token.access_token, expires_on=now + token.expires_in)

    @staticmethod
    def _classify_error(resp: requests.Response) -> AuthFault:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        error = str(payload.get("error", "")) if isinstance(payload, dict) else ""
        description = (
            str(payload.get("error_description", "")) if isinstance(payload, dict) else ""
        )
        message = f"Authority returned {resp.status_code}: {error} {description}".strip()
        if error == "invalid_scope" or "AADSTS70011" in description:
            return InvalidScope(message)
        return Denied(message)
