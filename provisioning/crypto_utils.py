"""
Key, CSR and certificate helpers built on the cryptography package.
"""

import logging
from typing import List, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

KEY_SIZE = 2048


def generate_private_key(key_size: int = KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(pem_data: bytes):
    return serialization.load_pem_private_key(pem_data, password=None)


def generate_csr(domain: str, key) -> x509.CertificateSigningRequest:
    """Build a CSR for a single domain, named in both the CN and the SAN."""
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "GB"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "The Internet"),
        ]
    )
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
    )
    return builder.sign(key, hashes.SHA256())


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.DER)


def csr_to_pem(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.PEM)


def load_csr(data: bytes) -> x509.CertificateSigningRequest:
    """Load a CSR in either DER or PEM form."""
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_csr(data)
    return x509.load_der_x509_csr(data)


def csr_dns_names(csr: x509.CertificateSigningRequest) -> List[str]:
    """All DNS names a CSR asks for: its common name plus SAN entries."""
    names = [
        attr.value
        for attr in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if isinstance(attr.value, str)
    ]
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names.extend(san.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        pass
    # Preserve order, drop duplicates
    return list(dict.fromkeys(name.lower() for name in names))


def certificate_dns_names(cert: x509.Certificate) -> List[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


def split_pem_chain(chain_pem: bytes) -> List[bytes]:
    """Split a PEM chain into DER certificates, preserving order."""
    certs = x509.load_pem_x509_certificates(chain_pem)
    return [cert.public_bytes(serialization.Encoding.DER) for cert in certs]


def der_chain_to_pem(chain: Sequence[bytes]) -> bytes:
    """Concatenate DER certificates into PEM blocks, preserving order."""
    return b"".join(
        x509.load_der_x509_certificate(der).public_bytes(serialization.Encoding.PEM)
        for der in chain
    )
