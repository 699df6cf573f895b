import datetime
import itertools
import os
from dataclasses import replace
from types import SimpleNamespace
from typing import Dict, List

import pytest
from acme import challenges, messages
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from provisioning import crypto_utils
from provisioning.cert_manager import CertificateManager
from provisioning.dns_records import DNSRecord, DNSRecordManager
from provisioning.domain_validation import DomainValidator
from provisioning.errors import ProviderError
from provisioning.registration_store import RegistrationStore
from provisioning.retry import RetryPolicy
from services.provisioning_service import ProvisioningService

DOMAIN = "example.com"


class FakeClock:
    """Clock that only moves when slept on."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDNSProvider:
    """In-memory DNS zone with optional per-operation failures."""

    def __init__(self):
        self.records: Dict[str, DNSRecord] = {}
        self.calls: List[str] = []
        self.fail_on = set()
        self._ids = itertools.count(1)

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise ProviderError(f"{operation} failed")

    def list_records(self, record_type, name):
        self._call("list")
        return [
            r
            for r in self.records.values()
            if r.record_type == record_type and r.name == name
        ]

    def create_record(self, record_type, name, content, ttl=60):
        self._call("create")
        record = DNSRecord(record_type, name, content, record_id=f"rec{next(self._ids)}")
        self.records[record.record_id] = record
        return record

    def update_record(self, record, content, ttl=60):
        self._call("update")
        updated = replace(record, content=content)
        self.records[record.record_id] = updated
        return updated

    def delete_record(self, record):
        self._call("delete")
        self.records.pop(record.record_id, None)

    def contents(self, record_type, name):
        return [
            r.content
            for r in self.records.values()
            if r.record_type == record_type and r.name == name
        ]


class TestCA:
    """Throwaway certificate authority that signs CSRs."""

    __test__ = False

    def __init__(self):
        self.key = crypto_utils.generate_private_key()
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "OTS Test CA")])
        now = datetime.datetime.now(datetime.timezone.utc)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.key, hashes.SHA256())
        )

    def sign(self, csr_data: bytes, days: int = 90, not_after=None) -> List[bytes]:
        """Sign a PEM or DER CSR, returning the DER chain leaf first."""
        csr = crypto_utils.load_csr(csr_data)
        names = crypto_utils.csr_dns_names(csr)
        now = datetime.datetime.now(datetime.timezone.utc)
        leaf = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])]))
            .issuer_name(self.cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(not_after or now + datetime.timedelta(days=days))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
                critical=False,
            )
            .sign(self.key, hashes.SHA256())
        )
        return [
            leaf.public_bytes(serialization.Encoding.DER),
            self.cert.public_bytes(serialization.Encoding.DER),
        ]

    def sign_pem(self, csr_data: bytes, **kwargs) -> str:
        return crypto_utils.der_chain_to_pem(self.sign(csr_data, **kwargs)).decode()


class FakeACMEClient:
    """Scriptable stand-in for acme.client.ClientV2."""

    def __init__(
        self,
        ca: TestCA,
        provider: FakeDNSProvider = None,
        offer_dns: bool = True,
        authorization_statuses=None,
        empty_chain: bool = False,
    ):
        self.ca = ca
        self.provider = provider
        self.offer_dns = offer_dns
        self.authorization_statuses = list(
            authorization_statuses or [messages.STATUS_VALID]
        )
        self.empty_chain = empty_chain
        self.accounts = []
        self.answers = []
        self.txt_at_answer = None
        self.poll_count = 0
        self.finalized = 0

    def new_account(self, registration):
        self.accounts.append(registration)

    def new_order(self, csr_pem):
        domain = crypto_utils.csr_dns_names(crypto_utils.load_csr(csr_pem))[0]
        token = os.urandom(32)
        chall = challenges.DNS01(token=token) if self.offer_dns else challenges.HTTP01(
            token=token
        )
        challb = SimpleNamespace(chall=chall)
        identifier = SimpleNamespace(value=domain)
        authzr = SimpleNamespace(
            body=SimpleNamespace(
                identifier=identifier,
                challenges=[challb],
                status=messages.STATUS_PENDING,
            )
        )
        return SimpleNamespace(authorizations=[authzr], csr_pem=csr_pem)

    def answer_challenge(self, challb, response):
        self.answers.append(response)
        if self.provider is not None:
            self.txt_at_answer = [
                r.content
                for r in self.provider.records.values()
                if r.record_type == "TXT"
            ]

    def poll(self, authzr):
        self.poll_count += 1
        index = min(self.poll_count, len(self.authorization_statuses)) - 1
        status = self.authorization_statuses[index]
        body = SimpleNamespace(
            identifier=authzr.body.identifier,
            challenges=authzr.body.challenges,
            status=status,
        )
        return SimpleNamespace(body=body), None

    def finalize_order(self, order, deadline):
        self.finalized += 1
        chain = "" if self.empty_chain else self.ca.sign_pem(order.csr_pem)
        return SimpleNamespace(fullchain_pem=chain)


@pytest.fixture(scope="session")
def test_ca():
    return TestCA()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dns_provider():
    return FakeDNSProvider()


@pytest.fixture
def dns_manager(dns_provider):
    return DNSRecordManager(dns_provider, ttl=60)


@pytest.fixture
def acme_client(test_ca, dns_provider):
    return FakeACMEClient(test_ca, dns_provider)


@pytest.fixture
def validator(dns_manager, clock, acme_client):
    return DomainValidator(
        dns_manager,
        directory_url="https://acme.test/directory",
        propagation_delay=5,
        record_retry=RetryPolicy(attempts=3, delay=5),
        authorization_retry=RetryPolicy(attempts=3, delay=2),
        issuance_timeout=300,
        clock=clock,
        client_factory=lambda url, key: acme_client,
        account_key_size=1024,
    )


@pytest.fixture
def store(tmp_path):
    store = RegistrationStore(f"sqlite:///{tmp_path / 'ots-cert.db'}")
    yield store
    store.close()


@pytest.fixture
def service(store, dns_manager, validator):
    return ProvisioningService(DOMAIN, store, dns_manager, CertificateManager(validator))


def make_csr_der(domain: str, key=None) -> bytes:
    key = key or crypto_utils.generate_private_key()
    return crypto_utils.csr_to_der(crypto_utils.generate_csr(domain, key))
