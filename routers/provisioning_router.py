"""
API endpoints for client registration and certificate requests.
"""

import base64
import binascii
import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import AliasChoices, BaseModel, Field

from provisioning.errors import DependencyError, InvalidCSR
from services.provisioning_service import ProvisioningService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["provisioning"])


# Request models
class RegisterRequest(BaseModel):
    """Request model for client registration."""

    client_id: str = Field(validation_alias=AliasChoices("clientID", "ClientID"))
    ip: str = Field(validation_alias=AliasChoices("ip", "IP"))


class CertificateRequest(BaseModel):
    """Request model for a certificate; csr is a base64 encoded DER CSR."""

    client_id: str = Field(validation_alias=AliasChoices("clientID", "ClientID"))
    csr: str = Field(validation_alias=AliasChoices("csr", "CSR"))


# Response models
class RegisterResponse(BaseModel):
    success: bool
    message: str
    hostname: str = ""


class CertificateResponse(BaseModel):
    success: bool
    message: str
    certificates: List[str] = []


def get_provisioning_service(request: Request) -> ProvisioningService:
    """Get the provisioning service or fail with 503."""
    service = getattr(request.app.state, "provisioning_service", None)
    if service is None:
        raise DependencyError("Provisioning service not available")
    return service


def decode_csr(csr: str) -> bytes:
    try:
        return base64.b64decode(csr, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidCSR(f"The CSR is not valid base64: {e}") from e


@router.post("/register", response_model=RegisterResponse)
async def register_client(
    body: RegisterRequest,
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Register a client and allocate its hostname.

    Points the new hostname's A record at the client's private IP.
    """
    fqdn = await run_in_threadpool(service.register, body.client_id, body.ip)
    return RegisterResponse(success=True, message="done", hostname=fqdn)


@router.post("/get_certificate", response_model=CertificateResponse)
async def get_certificate(
    body: CertificateRequest,
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Issue a certificate for a registered client.

    The CSR must name exactly the hostname allocated at registration.
    """
    csr_der = decode_csr(body.csr)
    certificates = await run_in_threadpool(
        service.request_certificate, body.client_id, csr_der
    )
    return CertificateResponse(
        success=True,
        message="done",
        certificates=[base64.b64encode(cert).decode("ascii") for cert in certificates],
    )
