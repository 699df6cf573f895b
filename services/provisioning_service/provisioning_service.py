"""
Hostname and certificate provisioning service.
Coordinates the registration store, DNS records and certificate issuance.
"""

import ipaddress
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from provisioning.cert_manager import CertificateManager
from provisioning.cloudflare_dns import CloudflareDNSProvider
from provisioning.dns_records import A_RECORD, DNSRecordManager
from provisioning.domain_validation import DomainValidator
from provisioning.env_config import ProvisioningConfig
from provisioning.errors import (
    AlreadyRegistered,
    DuplicateIdentity,
    InvalidAddress,
    InvalidIdentity,
    NonPrivateAddress,
    NotFound,
    ProviderError,
    UnknownClient,
)
from provisioning.registration_store import RegistrationStore

logger = logging.getLogger(__name__)

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def normalize_identity(identity) -> str:
    """Return the canonical hyphenated form of a client UUID."""
    if not isinstance(identity, str):
        raise InvalidIdentity(f"Client ID was not in the expected format: {identity}")
    try:
        return str(uuid.UUID(identity.strip()))
    except ValueError as e:
        raise InvalidIdentity(
            f"Client ID was not in the expected format: {identity}"
        ) from e


def check_private_address(ip) -> str:
    """
    Ensure ip is an IPv4 address in one of the RFC 1918 ranges.

    Returns:
        The address in canonical dotted form
    """
    try:
        address = ipaddress.IPv4Address(str(ip).strip())
    except ValueError as e:
        raise InvalidAddress(f"The IP address passed in is not valid: {ip}") from e

    if not any(address in network for network in PRIVATE_NETWORKS):
        raise NonPrivateAddress(f"The IP address passed in is not private: {ip}")
    return str(address)


@dataclass(frozen=True)
class ServerIdentity:
    """The hostname, address and certificate files the server itself uses."""

    fqdn: str
    ip: str
    cert_path: str
    key_path: str


class ProvisioningService:
    """Registers clients and issues certificates for their hostnames."""

    def __init__(
        self,
        domain: str,
        store: RegistrationStore,
        dns_manager: DNSRecordManager,
        cert_manager: CertificateManager,
    ):
        self.domain = domain.strip(".").lower()
        self.store = store
        self.dns_manager = dns_manager
        self.cert_manager = cert_manager
        self.server_identity: Optional[ServerIdentity] = None

    def fqdn_for(self, hostname: str) -> str:
        return f"{hostname}.{self.domain}"

    def register(self, identity: str, ip: str) -> str:
        """
        Register a new client and point its hostname at ip.

        Returns:
            The fully-qualified hostname allocated to the client

        Raises:
            InvalidIdentity: identity is not a UUID
            NonPrivateAddress: ip is not private (InvalidAddress if unparsable)
            AlreadyRegistered: identity already holds a hostname
            StoreError: The registration database failed
            ProviderError: The A record could not be published
        """
        logger.info("Call to register a client")
        client_id = normalize_identity(identity)
        logger.info(f"The client ID is: {client_id}")
        address = check_private_address(ip)
        logger.debug(f"The IP address is: {address}")

        try:
            record = self.store.register_client(client_id, address)
        except DuplicateIdentity as e:
            logger.info("The client is already registered, aborting")
            raise AlreadyRegistered(e.message) from e

        fqdn = self.fqdn_for(record.hostname)
        logger.info(f"Creating A record for {fqdn} with IP {address}")
        self.dns_manager.reconcile(A_RECORD, fqdn, address)
        return fqdn

    def request_certificate(self, identity: str, csr_der: bytes) -> List[bytes]:
        """
        Issue a certificate for a registered client's hostname.

        The hostname comes from the registration, never from the CSR; a CSR
        naming anything else is rejected.

        Returns:
            DER encoded certificates, leaf first
        """
        logger.info("Call to generate a certificate")
        client_id = normalize_identity(identity)
        try:
            record = self.store.lookup_client(client_id)
        except NotFound as e:
            logger.info(f"Client not found: {client_id}")
            raise UnknownClient(f"Client not found: {client_id}") from e

        fqdn = self.fqdn_for(record.hostname)
        logger.debug(f"Hostname pulled from the database: {fqdn}")
        certificates = self.cert_manager.issue_for_csr(fqdn, csr_der)
        logger.info(f"Issued a certificate for {fqdn}")
        return certificates

    def bootstrap_server_identity(
        self,
        ip: str,
        cert_path: str,
        key_path: str,
        hostname: Optional[str] = None,
        csr_path: Optional[str] = None,
    ) -> ServerIdentity:
        """
        Make sure the server has a hostname, a valid certificate and an A record.

        The hostname is always held in the store so no client can later be
        handed the same name. A fixed hostname is reserved under an identity
        derived from its FQDN, which makes the reservation survive restarts.
        Without one, a hostname is allocated against a random identity.

        Raises:
            DuplicateHostname: A client already holds the fixed hostname
        """
        if hostname:
            hostname = hostname.lower()
            self._reserve_hostname(hostname, ip)
        else:
            logger.debug("No hostname specified, generating one")
            record = self.store.register_client(str(uuid.uuid4()), ip)
            hostname = record.hostname
            logger.info(f"Hostname generated: {hostname}")

        fqdn = self.fqdn_for(hostname)
        self.cert_manager.ensure_certificate(fqdn, cert_path, key_path, csr_path)

        logger.info(f"Creating A record for {fqdn} with IP {ip}")
        self.dns_manager.reconcile(A_RECORD, fqdn, ip)

        self.server_identity = ServerIdentity(
            fqdn=fqdn, ip=ip, cert_path=cert_path, key_path=key_path
        )
        return self.server_identity

    def _reserve_hostname(self, hostname: str, ip: str) -> None:
        identity = str(uuid.uuid5(uuid.NAMESPACE_DNS, self.fqdn_for(hostname)))
        try:
            self.store.register_client(identity, ip, hostname=hostname)
            logger.info(f"Reserved hostname {hostname} for the server")
        except DuplicateIdentity:
            logger.debug(f"Hostname {hostname} is already reserved for the server")

    def close(self) -> None:
        self.store.close()


def create_provisioning_service(
    domain: str,
    database_url: str,
    config: ProvisioningConfig,
) -> ProvisioningService:
    """
    Build the service and its collaborators from configuration.

    Raises:
        StoreError: The registration database can't be opened
        ProviderError: The DNS provider rejected the credentials or zone
    """
    provider = CloudflareDNSProvider(
        api_token=config.cloudflare_api_token,
        zone_id=config.cloudflare_zone_id,
        api_email=config.cloudflare_api_email,
        api_key=config.cloudflare_api_key,
    )
    if not provider.validate_credentials():
        raise ProviderError("Cloudflare credentials were rejected")
    if not config.cloudflare_zone_id:
        provider.get_zone_id(domain)

    dns_manager = DNSRecordManager(provider, ttl=config.dns_record_ttl)
    validator = DomainValidator(
        dns_manager,
        directory_url=config.acme_directory_url,
        email=config.acme_email,
        propagation_delay=config.dns_propagation_delay,
        record_retry=config.record_retry,
        authorization_retry=config.authorization_retry,
        issuance_timeout=config.acme_issuance_timeout,
        propagation_check=config.dns_propagation_check,
    )
    store = RegistrationStore(database_url)
    return ProvisioningService(domain, store, dns_manager, CertificateManager(validator))
