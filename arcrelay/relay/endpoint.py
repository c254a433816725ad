"""Decomposition of relay URLs returned by proxy registration."""

from __future__ import annotations

from ..contracts import RelayEndpoint
from ..errors import EndpointMalformed

DEFAULT_PORTS = {"https:": 443, "http:": 80}
MAX_PORT = 65535


def parse_endpoint(url: str, expires_on: int) -> RelayEndpoint:
    """Split ``url`` into host header and port.

    ``https://host.example:6443/path`` yields host ``host.example`` and port
    ``6443``.  The URL must have at least three ``/``-delimited segments.
    """
    segments = (url or "").split("/")
    if len(segments) < 3:
        raise EndpointMalformed(f"Relay URL has too few segments: {url!r}", body=url)

    scheme, authority = segments[0].lower(), segments[2]
    if authority.startswith("["):
        host, closed, rest = authority.partition("]")
        if not closed or (rest and not rest.startswith(":")):
            raise EndpointMalformed(f"Relay URL has invalid host: {url!r}", body=url)
        host += closed
        port_text = rest[1:]
    else:
        host, sep, port_text = authority.rpartition(":")
        if not sep:
            host, port_text = authority, ""
    if not host or host == "[]":
        raise EndpointMalformed(f"Relay URL has no host: {url!r}", body=url)

    if port_text:
        if not (port_text.isascii() and port_text.isdigit()):
            raise EndpointMalformed(f"Relay URL has invalid port: {url!r}", body=url)
        port = int(port_text)
        if not 0 < port <= MAX_PORT:
            raise EndpointMalformed(f"Relay URL port out of range: {url!r}", body=url)
    elif scheme in DEFAULT_PORTS:
        port = DEFAULT_PORTS[scheme]
    else:
        raise EndpointMalformed(f"Relay URL has no port: {url!r}", body=url)

    return RelayEndpoint(uri=url, host_header=host, port=port, expires_on=expires_on)
