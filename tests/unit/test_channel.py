"""Pinned channel tests."""

import datetime

import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from urllib3.connection import HTTPSConnection

from arcrelay.contracts import RelayEndpoint
from arcrelay.errors import ChannelFault, PinningError
from arcrelay.relay.channel import (
    PinnedAdapter,
    PinnedChannel,
    PinnedHTTPSConnection,
    PinnedHTTPSConnectionPool,
    certificate_matches,
    common_name,
    pinned_session,
    provisioning_session,
    subject_from_der,
)

IDENTITY = "/subscriptions/sub-1/resourceGroups/rg-1/providers/Microsoft.HybridCompute/machines/server-1"
ENDPOINT = RelayEndpoint(
    uri="https://relay.example:6443", host_header="relay.example", port=6443, expires_on=2_000_000_000
)


def _certificate_der(common: str) -> bytes:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Relay"),
            x509.NameAttribute(NameOID.COMMON_NAME, common),
        ]
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.DER)


def test_exact_common_name_accepted():
    assert certificate_matches(f"CN={IDENTITY}", IDENTITY)


@pytest.mark.parametrize(
    "subject",
    [
        f"CN={IDENTITY}/other",  # present but mismatched
        f"CN={IDENTITY.upper()}",  # comparison is case-sensitive
        "",  # absent subject
        None,  # absent certificate
    ],
)
def test_everything_else_rejected(subject):
    assert not certificate_matches(subject, IDENTITY)


def test_common_name_is_last_field():
    assert common_name("O=Relay, CN=device") == "device"
    assert common_name("no fields") is None


def test_subject_from_der_keeps_common_name_last():
    subject = subject_from_der(_certificate_der(IDENTITY))
    assert subject == f"O=Relay, CN={IDENTITY}"
    assert certificate_matches(subject, IDENTITY)
    assert subject_from_der(None) is None
    assert subject_from_der(b"junk") is None


class FakeSock:
    def __init__(self, der):
        self.der = der
        self.closed = False

    def getpeercert(self, binary_form=False):
        return self.der

    def close(self):
        self.closed = True


def _connect_with(monkeypatch, der):
    sock = FakeSock(der)

    def fake_connect(self):
        self.sock = sock

    monkeypatch.setattr(HTTPSConnection, "connect", fake_connect)
    conn = PinnedHTTPSConnection("relay.example", 6443, expected_identity=IDENTITY)
    return conn, sock


def test_connection_accepts_pinned_certificate(monkeypatch):
    conn, sock = _connect_with(monkeypatch, _certificate_der(IDENTITY))
    conn.connect()
    assert conn.is_verified
    assert not sock.closed


@pytest.mark.parametrize("der", [None, b""])
def test_connection_aborts_without_certificate(monkeypatch, der):
    conn, sock = _connect_with(monkeypatch, der)
    with pytest.raises(PinningError):
        conn.connect()


def test_connection_aborts_on_mismatch(monkeypatch):
    conn, sock = _connect_with(monkeypatch, _certificate_der("some-other-device"))
    with pytest.raises(PinningError):
        conn.connect()
    assert sock.closed


def test_adapter_installs_pinned_pool():
    adapter = PinnedAdapter(IDENTITY)
    pool = adapter.poolmanager.connection_from_url("https://relay.example:6443")
    assert isinstance(pool, PinnedHTTPSConnectionPool)
    assert pool.conn_kw["expected_identity"] == IDENTITY


def test_provisioning_and_pinned_sessions_differ():
    pinned = pinned_session(IDENTITY)
    trusting = provisioning_session()
    assert pinned is not trusting
    assert isinstance(pinned.get_adapter("https://relay.example"), PinnedAdapter)
    assert not isinstance(trusting.get_adapter("https://relay.example"), PinnedAdapter)
    assert trusting.verify is False
    assert pinned.trust_env is False


def test_poll_returns_payload(fake_http, make_response):
    http = fake_http(make_response(200, [{"Server Name": "srv", "Server Time": "now"}]))
    channel = PinnedChannel(IDENTITY, session=http)

    response = channel.poll(ENDPOINT, {"Authorization": "PoP shr"}, "/api/status")

    assert response.highlights() == {"Server Name": "srv", "Server Time": "now"}
    call = http.calls[0]
    assert call["url"] == "https://relay.example:6443/api/status"
    assert call["headers"]["Host"] == "relay.example"
    assert call["headers"]["Accept"] == "application/json"
    assert call["headers"]["Authorization"] == "PoP shr"


def test_poll_non_success_is_channel_fault(fake_http, make_response):
    http = fake_http(make_response(401, text="expired"))
    with pytest.raises(ChannelFault) as info:
        PinnedChannel(IDENTITY, session=http).poll(ENDPOINT, {})
    assert info.value.status_code == 401
    assert info.value.body == "expired"


@pytest.mark.parametrize("text", ["<html>", "42", '"text"', "[1, 2]"])
def test_poll_unparsable_payload_is_channel_fault(fake_http, make_response, text):
    http = fake_http(make_response(200, text=text))
    with pytest.raises(ChannelFault):
        PinnedChannel(IDENTITY, session=http).poll(ENDPOINT, {})


def test_poll_transport_error_is_channel_fault(fake_http):
    http = fake_http(requests.exceptions.SSLError("pin mismatch"))
    with pytest.raises(ChannelFault):
        PinnedChannel(IDENTITY, session=http).poll(ENDPOINT, {})


def test_poll_refuses_plain_http(fake_http):
    endpoint = RelayEndpoint(uri="http://relay.example:80", host_header="relay.example", port=80, expires_on=0)
    http = fake_http()
    with pytest.raises(ChannelFault):
        PinnedChannel(IDENTITY, session=http).poll(endpoint, {})
    assert http.calls == []
