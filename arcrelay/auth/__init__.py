"""Token acquisition for arcrelay."""

from .credentials import ClientCertificate, ClientCredential, ClientSecret, load_client_credential
from .pop import PopKey, sign_http_request, verify_signed_request
from .tokens import TokenProvider

__all__ = [
    "ClientCertificate",
    "ClientCredential",
    "ClientSecret",
    "PopKey",
    "TokenProvider",
    "load_client_credential",
    "sign_http_request",
    "verify_signed_request",
]
