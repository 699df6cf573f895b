"""
Certificate lifecycle management.
Decides whether a certificate on disk can be reused and otherwise obtains a
fresh one through DNS-01 validation.
"""

import datetime
import enum
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Set, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from . import crypto_utils
from .domain_validation import DomainValidator
from .errors import IssuanceInProgress, PersistenceError

logger = logging.getLogger(__name__)


class CertificateStatus(enum.Enum):
    VALID = "valid"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    EXPIRED = "expired"
    NAME_MISMATCH = "name-mismatch"
    KEY_MISMATCH = "key-mismatch"


@dataclass(frozen=True)
class CertificateArtifact:
    fqdn: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    dns_names: Tuple[str, ...]
    chain_pem: bytes


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class IssuanceLocks:
    """Non-blocking per-domain locks so one domain is never issued twice at once."""

    def __init__(self):
        self._guard = threading.Lock()
        self._active: Set[str] = set()

    @contextmanager
    def hold(self, domain: str) -> Iterator[None]:
        key = domain.lower()
        with self._guard:
            if key in self._active:
                raise IssuanceInProgress(
                    f"A certificate for {domain} is already being issued"
                )
            self._active.add(key)
        try:
            yield
        finally:
            with self._guard:
                self._active.discard(key)

    def is_active(self, domain: str) -> bool:
        with self._guard:
            return domain.lower() in self._active


class CertificateManager:
    """Manages reuse and issuance of certificates via DNS-01 validation."""

    def __init__(
        self,
        validator: DomainValidator,
        now: Callable[[], datetime.datetime] = _utcnow,
        locks: Optional[IssuanceLocks] = None,
    ):
        """
        Initialize certificate manager.

        Args:
            validator: Performs DNS-01 validation and issuance
            now: Returns the current UTC time, replaced in tests
            locks: Per-domain issuance guard, shared if several managers exist
        """
        self.validator = validator
        self.now = now
        self.locks = locks or IssuanceLocks()

    def load_certificate(self, fqdn: str, cert_path: str) -> CertificateArtifact:
        """
        Parse a PEM chain from disk. The first certificate is the leaf.

        Raises:
            OSError: If the file cannot be read
            ValueError: If it holds no parsable certificate
        """
        with open(cert_path, "rb") as f:
            chain_pem = f.read()
        certs = x509.load_pem_x509_certificates(chain_pem)
        leaf = certs[0]
        return CertificateArtifact(
            fqdn=fqdn,
            not_before=leaf.not_valid_before_utc,
            not_after=leaf.not_valid_after_utc,
            dns_names=tuple(crypto_utils.certificate_dns_names(leaf)),
            chain_pem=chain_pem,
        )

    def inspect(self, fqdn: str, cert_path: str, key_path: str) -> CertificateStatus:
        """
        Report whether the certificate and key on disk are usable for fqdn.

        Usable means both files parse, the leaf has not expired, its
        subject alternative names include fqdn and the key matches it.
        """
        cert_exists = os.path.isfile(cert_path)
        key_exists = os.path.isfile(key_path)
        if not cert_exists or not key_exists:
            if not key_exists:
                logger.debug(f"Can't find private key {key_path}")
            if not cert_exists:
                logger.debug(f"Can't find certificate {cert_path}")
            return CertificateStatus.MISSING

        try:
            artifact = self.load_certificate(fqdn, cert_path)
            with open(key_path, "rb") as f:
                key = crypto_utils.load_private_key(f.read())
            leaf = x509.load_pem_x509_certificates(artifact.chain_pem)[0]
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Existing certificate or key for {fqdn} is unreadable: {e}")
            return CertificateStatus.UNREADABLE

        logger.debug(f"Not Valid After: {artifact.not_after}")
        if not artifact.not_after > self.now():
            logger.debug("Certificate has expired")
            return CertificateStatus.EXPIRED

        if fqdn not in artifact.dns_names:
            logger.debug(f"No matching DNS names found in {list(artifact.dns_names)}")
            return CertificateStatus.NAME_MISMATCH

        if _public_der(key.public_key()) != _public_der(leaf.public_key()):
            logger.debug("Private key does not match the certificate")
            return CertificateStatus.KEY_MISMATCH

        return CertificateStatus.VALID

    def ensure_certificate(
        self,
        fqdn: str,
        cert_path: str,
        key_path: str,
        csr_path: Optional[str] = None,
    ) -> bytes:
        """
        Reuse the certificate on disk if it is valid for fqdn, otherwise issue one.
        The CSR used for a new certificate is also written to csr_path if given.

        Returns:
            The PEM certificate chain now stored at cert_path

        Raises:
            IssuanceInProgress: If fqdn is already being issued
            PersistenceError: If the new certificate or key cannot be written
            DomainValidationError: If issuance fails
        """
        status = self.inspect(fqdn, cert_path, key_path)
        if status is CertificateStatus.VALID:
            logger.info(f"Certificate for {fqdn} is valid, reusing it")
            return _read(cert_path)

        logger.info(
            f"No valid certificate found for {fqdn} ({status.value}), going to create a new one"
        )
        with self.locks.hold(fqdn):
            # Another issuance may have stored one since the check above
            if self.inspect(fqdn, cert_path, key_path) is CertificateStatus.VALID:
                logger.info(f"Certificate for {fqdn} was just issued, reusing it")
                return _read(cert_path)

            logger.debug("Generating the private key")
            key = crypto_utils.generate_private_key()
            logger.debug("Generating the CSR")
            csr = crypto_utils.generate_csr(fqdn, key)
            if csr_path:
                write_atomic(csr_path, crypto_utils.csr_to_pem(csr))
            chain = self.validator.issue(crypto_utils.csr_to_der(csr), fqdn)

            chain_pem = crypto_utils.der_chain_to_pem(chain)
            logger.debug("Certificate generated, writing it to disk")
            write_atomic_files(
                [
                    (key_path, crypto_utils.private_key_to_pem(key), 0o600),
                    (cert_path, chain_pem, None),
                ]
            )
            logger.info(f"Wrote certificate for {fqdn} to {cert_path}")
            return chain_pem

    def issue_for_csr(self, fqdn: str, csr_der: bytes) -> List[bytes]:
        """
        Issue a certificate for a client-supplied CSR.

        Returns:
            DER encoded certificates, leaf first
        """
        with self.locks.hold(fqdn):
            return self.validator.issue(csr_der, fqdn)


def _public_der(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def stage_file(path: str, data: bytes, mode: Optional[int] = None) -> str:
    """Write data to a temporary file beside path and return its name."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if mode is not None:
            os.chmod(tmp_path, mode)
    except OSError:
        os.unlink(tmp_path)
        raise
    return tmp_path


def write_atomic_files(files: List[Tuple[str, bytes, Optional[int]]]) -> None:
    """
    Replace several files together. Every file is written out before any of
    them is moved into place, so a failed write leaves the old set untouched.

    Args:
        files: (path, data, mode) for each file, mode None keeps the default

    Raises:
        PersistenceError: If any file cannot be written
    """
    staged: List[Tuple[str, str]] = []
    path = None
    try:
        for path, data, mode in files:
            staged.append((stage_file(path, data, mode), path))
        for tmp_path, path in staged:
            os.replace(tmp_path, path)
    except OSError as e:
        for tmp_path, _ in staged:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.error(f"Failed to write {path}: {e}")
        raise PersistenceError(f"Failed to write {path}: {e}") from e


def write_atomic(path: str, data: bytes, mode: Optional[int] = None) -> None:
    """Replace path with data so readers never see a partial file."""
    write_atomic_files([(path, data, mode)])
