import socket
import threading
import uuid
from types import SimpleNamespace

import pytest

from conftest import DOMAIN, make_csr_der
from provisioning import network
from provisioning.cert_manager import CertificateManager
from provisioning.dns_records import A_RECORD
from provisioning.errors import (
    AlreadyRegistered,
    DuplicateHostname,
    InvalidAddress,
    InvalidCSR,
    InvalidIdentity,
    NonPrivateAddress,
    UnknownClient,
)
from provisioning.registration_store import RegistrationStore
from services.provisioning_service import (
    ProvisioningService,
    check_private_address,
    normalize_identity,
)

CLIENT_ID = "11111111-1111-1111-1111-111111111111"


@pytest.mark.parametrize(
    "raw",
    [
        "eca2450a-482d-4b4b-baa5-9ff0daec19e9",
        "eca2450a482d4b4bbaa59ff0daec19e9",
        "urn:uuid:eca2450a-482d-4b4b-baa5-9ff0daec19e9",
        "{ECA2450A-482D-4B4B-BAA5-9FF0DAEC19E9}",
    ],
)
def test_identity_forms_normalize_to_canonical(raw):
    assert normalize_identity(raw) == "eca2450a-482d-4b4b-baa5-9ff0daec19e9"


@pytest.mark.parametrize("raw", ["", "not-a-uuid", "eca2450a-482d", None, 42])
def test_invalid_identities(raw):
    with pytest.raises(InvalidIdentity):
        normalize_identity(raw)


@pytest.mark.parametrize(
    "ip", ["10.0.0.5", "172.16.0.1", "172.31.255.255", "192.168.1.20"]
)
def test_private_addresses_accepted(ip):
    assert check_private_address(ip) == ip


@pytest.mark.parametrize("ip", ["8.8.8.8", "172.15.255.255", "172.32.0.1", "127.0.0.1"])
def test_public_addresses_rejected(ip):
    with pytest.raises(NonPrivateAddress):
        check_private_address(ip)


@pytest.mark.parametrize("ip", ["", "10.0.0", "fd00::1", "nonsense"])
def test_unparsable_addresses_rejected(ip):
    with pytest.raises(InvalidAddress):
        check_private_address(ip)


def test_register_allocates_hostname_and_a_record(service, dns_provider, store):
    fqdn = service.register(CLIENT_ID, "10.0.0.5")

    assert fqdn.endswith(f".{DOMAIN}")
    assert dns_provider.contents(A_RECORD, fqdn) == ["10.0.0.5"]
    assert store.lookup_client(CLIENT_ID).hostname == fqdn.split(".")[0]


def test_register_twice_is_rejected(service, store):
    service.register(CLIENT_ID, "10.0.0.5")

    with pytest.raises(AlreadyRegistered):
        service.register(CLIENT_ID.replace("-", ""), "10.0.0.6")
    assert store.count() == 1


def test_request_certificate_uses_stored_hostname(service):
    fqdn = service.register(CLIENT_ID, "10.0.0.5")

    with pytest.raises(InvalidCSR):
        service.request_certificate(CLIENT_ID, make_csr_der("victim.example.com"))
    assert len(service.request_certificate(CLIENT_ID, make_csr_der(fqdn))) == 2


def test_request_certificate_for_unknown_client(service):
    with pytest.raises(UnknownClient):
        service.request_certificate(str(uuid.uuid4()), make_csr_der("x.example.com"))


def test_bootstrap_reserves_hostname_and_publishes_record(service, store, dns_provider, tmp_path):
    identity = service.bootstrap_server_identity(
        "10.0.0.2", str(tmp_path / "server.crt"), str(tmp_path / "server.key")
    )

    assert identity.fqdn.endswith(f".{DOMAIN}")
    assert store.hostname_taken(identity.fqdn.split(".")[0])
    assert dns_provider.contents(A_RECORD, identity.fqdn) == ["10.0.0.2"]
    assert (tmp_path / "server.crt").exists()
    assert service.server_identity == identity


def test_bootstrap_with_fixed_hostname(service, store, tmp_path):
    identity = service.bootstrap_server_identity(
        "10.0.0.2",
        str(tmp_path / "server.crt"),
        str(tmp_path / "server.key"),
        hostname="certs",
    )

    assert identity.fqdn == f"certs.{DOMAIN}"
    assert store.hostname_taken("certs")
    assert store.count() == 1


def test_fixed_hostname_survives_restart(service, store, tmp_path):
    paths = (str(tmp_path / "server.crt"), str(tmp_path / "server.key"))
    first = service.bootstrap_server_identity("10.0.0.2", *paths, hostname="certs")

    second = service.bootstrap_server_identity("10.0.0.2", *paths, hostname="certs")

    assert second.fqdn == first.fqdn
    assert store.count() == 1


def test_fixed_hostname_is_never_given_to_a_client(
    tmp_path, dns_manager, dns_provider, validator
):
    names = iter(["calm-curie", "brave-turing"])
    store = RegistrationStore(
        f"sqlite:///{tmp_path / 'ots-cert.db'}", name_generator=lambda: next(names)
    )
    service = ProvisioningService(DOMAIN, store, dns_manager, CertificateManager(validator))
    try:
        server = service.bootstrap_server_identity(
            "10.0.0.2",
            str(tmp_path / "server.crt"),
            str(tmp_path / "server.key"),
            hostname="calm-curie",
        )
        client_fqdn = service.register(CLIENT_ID, "10.0.0.99")
    finally:
        store.close()

    assert server.fqdn == f"calm-curie.{DOMAIN}"
    assert client_fqdn == f"brave-turing.{DOMAIN}"
    assert dns_provider.contents(A_RECORD, server.fqdn) == ["10.0.0.2"]


def test_fixed_hostname_held_by_a_client_is_refused(service, store, tmp_path):
    store.register_client(CLIENT_ID, "10.0.0.5", hostname="certs")

    with pytest.raises(DuplicateHostname):
        service.bootstrap_server_identity(
            "10.0.0.2",
            str(tmp_path / "server.crt"),
            str(tmp_path / "server.key"),
            hostname="certs",
        )


class BlockingValidator:
    """Signs CSRs with the test CA once released."""

    def __init__(self, ca):
        self.ca = ca
        self.started = threading.Event()
        self.release = threading.Event()

    def issue(self, csr_der, domain):
        self.started.set()
        if not self.release.wait(timeout=10):
            raise RuntimeError("never released")
        return self.ca.sign(csr_der)


def test_registration_proceeds_during_issuance(store, dns_manager, test_ca):
    validator = BlockingValidator(test_ca)
    service = ProvisioningService(DOMAIN, store, dns_manager, CertificateManager(validator))
    fqdn = service.register(CLIENT_ID, "10.0.0.5")

    chains = []
    issuing = threading.Thread(
        target=lambda: chains.append(
            service.request_certificate(CLIENT_ID, make_csr_der(fqdn))
        )
    )
    registered = []
    registering = threading.Thread(
        target=lambda: registered.append(service.register(str(uuid.uuid4()), "10.0.0.6"))
    )

    issuing.start()
    try:
        assert validator.started.wait(timeout=10)
        registering.start()
        registering.join(timeout=10)
        assert not registering.is_alive()
        assert not validator.release.is_set()
    finally:
        validator.release.set()
        issuing.join(timeout=10)

    assert len(registered) == 1
    assert registered[0] != fqdn
    assert store.count() == 2
    assert len(chains[0]) == 2




def _addr(address, family=socket.AF_INET):
    return SimpleNamespace(family=family, address=address)


def test_get_ip_picks_single_non_loopback_address(monkeypatch):
    monkeypatch.setattr(
        network.psutil,
        "net_if_addrs",
        lambda: {"lo": [_addr("127.0.0.1")], "eth0": [_addr("10.0.0.7")]},
    )
    assert network.get_ip() == "10.0.0.7"


def test_get_ip_needs_interface_when_ambiguous(monkeypatch):
    monkeypatch.setattr(
        network.psutil,
        "net_if_addrs",
        lambda: {"eth0": [_addr("10.0.0.7")], "eth1": [_addr("192.168.0.3")]},
    )
    with pytest.raises(RuntimeError):
        network.get_ip()
    assert network.get_ip("eth1") == "192.168.0.3"


def test_get_ip_without_addresses(monkeypatch):
    monkeypatch.setattr(
        network.psutil, "net_if_addrs", lambda: {"lo": [_addr("127.0.0.1")]}
    )
    with pytest.raises(RuntimeError):
        network.get_ip()
