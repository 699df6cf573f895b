"""
Environment configuration for hostname and certificate provisioning.
Handles the DNS provider, ACME and polling settings.
"""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional

from .domain_validation import LETSENCRYPT_PRODUCTION, LETSENCRYPT_STAGING
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _directory_url(value: str) -> str:
    """Expand the "production" and "staging" shorthands for Let's Encrypt."""
    shorthands = {"production": LETSENCRYPT_PRODUCTION, "staging": LETSENCRYPT_STAGING}
    return shorthands.get(value.strip().lower(), value.strip())


@dataclass
class ProvisioningConfig:
    """Configuration for provisioning loaded from environment variables."""

    cloudflare_api_token: Optional[str]
    cloudflare_api_email: Optional[str]
    cloudflare_api_key: Optional[str]
    cloudflare_zone_id: Optional[str]
    acme_directory_url: str
    acme_email: Optional[str]
    dns_record_ttl: int
    dns_propagation_check: str
    dns_propagation_delay: float
    dns_record_check_attempts: int
    dns_record_check_interval: float
    acme_authorization_attempts: int
    acme_authorization_interval: float
    acme_issuance_timeout: float

    @classmethod
    def from_env(cls) -> "ProvisioningConfig":
        """Load configuration from environment variables."""
        return cls(
            cloudflare_api_token=os.getenv("CLOUDFLARE_API_TOKEN") or None,
            cloudflare_api_email=os.getenv("CLOUDFLARE_API_EMAIL") or None,
            cloudflare_api_key=os.getenv("CLOUDFLARE_API_KEY") or None,
            cloudflare_zone_id=os.getenv("CLOUDFLARE_ZONE_ID") or None,
            acme_directory_url=_directory_url(
                os.getenv("ACME_DIRECTORY_URL", LETSENCRYPT_PRODUCTION)
            ),
            acme_email=os.getenv("ACME_EMAIL") or None,
            dns_record_ttl=int(os.getenv("DNS_RECORD_TTL", "60")),
            dns_propagation_check=os.getenv("DNS_PROPAGATION_CHECK", "provider").lower(),
            dns_propagation_delay=float(os.getenv("DNS_PROPAGATION_DELAY", "5")),
            dns_record_check_attempts=int(os.getenv("DNS_RECORD_CHECK_ATTEMPTS", "3")),
            dns_record_check_interval=float(os.getenv("DNS_RECORD_CHECK_INTERVAL", "5")),
            acme_authorization_attempts=int(
                os.getenv("ACME_AUTHORIZATION_ATTEMPTS", "3")
            ),
            acme_authorization_interval=float(
                os.getenv("ACME_AUTHORIZATION_INTERVAL", "2")
            ),
            acme_issuance_timeout=float(os.getenv("ACME_ISSUANCE_TIMEOUT", "300")),
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.cloudflare_api_token:
            if len(self.cloudflare_api_token) < 10:
                errors.append("CLOUDFLARE_API_TOKEN appears to be invalid (too short)")
        elif not (self.cloudflare_api_email and self.cloudflare_api_key):
            errors.append(
                "CLOUDFLARE_API_TOKEN, or CLOUDFLARE_API_EMAIL and CLOUDFLARE_API_KEY, "
                "environment variables are required"
            )

        if self.cloudflare_api_email and "@" not in self.cloudflare_api_email:
            errors.append("CLOUDFLARE_API_EMAIL must be a valid email address")

        if self.acme_email and "@" not in self.acme_email:
            errors.append("ACME_EMAIL must be a valid email address")

        if not self.acme_directory_url.startswith("https://"):
            errors.append("ACME_DIRECTORY_URL must be an https:// URL")

        if self.dns_propagation_check not in ("provider", "resolver"):
            errors.append("DNS_PROPAGATION_CHECK must be one of: provider, resolver")

        if self.dns_record_ttl < 1:
            errors.append("DNS_RECORD_TTL must be at least 1 second")

        if self.dns_record_check_attempts < 1:
            errors.append("DNS_RECORD_CHECK_ATTEMPTS must be at least 1")

        if self.acme_authorization_attempts < 1:
            errors.append("ACME_AUTHORIZATION_ATTEMPTS must be at least 1")

        for name, value in (
            ("DNS_PROPAGATION_DELAY", self.dns_propagation_delay),
            ("DNS_RECORD_CHECK_INTERVAL", self.dns_record_check_interval),
            ("ACME_AUTHORIZATION_INTERVAL", self.acme_authorization_interval),
        ):
            if value < 0:
                errors.append(f"{name} must not be negative")

        if self.acme_issuance_timeout <= 0:
            errors.append("ACME_ISSUANCE_TIMEOUT must be positive")

        return errors

    @property
    def record_retry(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.dns_record_check_attempts,
            delay=self.dns_record_check_interval,
        )

    @property
    def authorization_retry(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.acme_authorization_attempts,
            delay=self.acme_authorization_interval,
        )

    def log_configuration(self):
        """Log the current configuration (without sensitive data)."""
        logger.info("Provisioning configuration:")
        if self.cloudflare_api_token:
            logger.info("  Cloudflare auth: API token")
        else:
            logger.info(f"  Cloudflare auth: API key for {self.cloudflare_api_email}")
        logger.info(f"  Cloudflare zone: {self.cloudflare_zone_id or 'auto-detect'}")
        logger.info(f"  ACME directory: {self.acme_directory_url}")
        logger.info(f"  DNS propagation check: {self.dns_propagation_check}")
        logger.info(
            f"  Proof record polling: {self.dns_record_check_attempts} x "
            f"{self.dns_record_check_interval}s after {self.dns_propagation_delay}s"
        )
        logger.info(
            f"  Authorization polling: {self.acme_authorization_attempts} x "
            f"{self.acme_authorization_interval}s"
        )
        logger.info(f"  Issuance timeout: {self.acme_issuance_timeout}s")
