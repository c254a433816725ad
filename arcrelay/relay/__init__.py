"""Relay provisioning and pinned transport."""

from .channel import PinnedChannel, certificate_matches, pinned_session, provisioning_session
from .endpoint import parse_endpoint
from .provisioner import RelayProvisioner

__all__ = [
    "PinnedChannel",
    "RelayProvisioner",
    "certificate_matches",
    "parse_endpoint",
    "pinned_session",
    "provisioning_session",
]
