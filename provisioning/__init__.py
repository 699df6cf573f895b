"""
Provisioning module for the OTS certificate server.
Provides hostname allocation, Cloudflare DNS record management and
Let's Encrypt certificate issuance via DNS-01 validation.
"""

from .env_config import ProvisioningConfig
from .registration_store import ClientRecord, RegistrationStore
from .cloudflare_dns import CloudflareDNSProvider
from .dns_records import DNSRecord, DNSRecordManager
from .domain_validation import DomainValidator
from .cert_manager import CertificateManager, CertificateStatus
from .retry import Clock, RetryPolicy

__all__ = [
    "ProvisioningConfig",
    "ClientRecord",
    "RegistrationStore",
    "CloudflareDNSProvider",
    "DNSRecord",
    "DNSRecordManager",
    "DomainValidator",
    "CertificateManager",
    "CertificateStatus",
    "Clock",
    "RetryPolicy",
]
