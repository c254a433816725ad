"""arcrelay: keeps an authenticated channel to a relayed management endpoint alive."""

from .auth import PopKey, TokenProvider
from .config import ArcRelayConfig, load_config
from .contracts import AccessToken, PopBinding, RelayCredential, RelayEndpoint
from .relay import PinnedChannel, RelayProvisioner, certificate_matches, parse_endpoint
from .session import SessionLoop, SessionState, SessionStats

__version__ = "0.1.0"
__all__ = [
    "AccessToken",
    "ArcRelayConfig",
    "PinnedChannel",
    "PopBinding",
    "PopKey",
    "RelayCredential",
    "RelayEndpoint",
    "RelayProvisioner",
    "SessionLoop",
    "SessionState",
    "SessionStats",
    "TokenProvider",
    "certificate_matches",
    "load_config",
    "parse_endpoint",
]
