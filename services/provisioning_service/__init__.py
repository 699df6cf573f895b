"""
Provisioning service for the OTS certificate server.
Integrates client registration, DNS records and certificate issuance.
"""

from .provisioning_service import (
    ProvisioningService,
    ServerIdentity,
    check_private_address,
    create_provisioning_service,
    normalize_identity,
)

__all__ = [
    "ProvisioningService",
    "ServerIdentity",
    "check_private_address",
    "create_provisioning_service",
    "normalize_identity",
]
