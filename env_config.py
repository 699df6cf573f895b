"""
Environment configuration for the OTS certificate server.
Handles all environment variable parsing and validation for the server process.
"""

import os
import logging
import re
from typing import List, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LOG_LEVELS = ["critical", "error", "warning", "info", "debug", "trace"]

_DOMAIN_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)
_LABEL_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


@dataclass
class ServerConfig:
    """Main server configuration loaded from environment variables."""

    # Server settings
    host: str
    port: int
    log_level: str

    # Identity of the server itself
    domain: str
    hostname: Optional[str]
    interface: Optional[str]
    server_ip: Optional[str]

    # Storage
    database_url: str
    cert_filename: str
    key_filename: str
    csr_filename: str

    tls_enabled: bool

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            # Server settings
            host=os.getenv("OTS_HOST", "0.0.0.0"),
            port=int(os.getenv("OTS_PORT", "8443")),
            log_level=os.getenv("OTS_LOG_LEVEL", "info").lower(),
            # Identity
            domain=os.getenv("OTS_DOMAIN", "").strip().strip(".").lower(),
            hostname=os.getenv("OTS_HOSTNAME") or None,
            interface=os.getenv("OTS_INTERFACE") or None,
            server_ip=os.getenv("OTS_SERVER_IP") or None,
            # Storage
            database_url=os.getenv("OTS_DATABASE_URL", "sqlite:///./ots-cert.db"),
            cert_filename=os.getenv("OTS_CERT_FILENAME", "ots-cert-server.crt"),
            key_filename=os.getenv("OTS_KEY_FILENAME", "ots-cert-server.key"),
            csr_filename=os.getenv("OTS_CSR_FILENAME", "ots-cert-server.csr"),
            tls_enabled=os.getenv("OTS_TLS_ENABLED", "true").lower() == "true",
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.port < 1 or self.port > 65535:
            errors.append("OTS_PORT must be between 1 and 65535")

        if self.log_level not in LOG_LEVELS:
            errors.append(f"OTS_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}")

        if not self.domain:
            errors.append("OTS_DOMAIN environment variable is required")
        elif not _DOMAIN_RE.match(self.domain):
            errors.append(f"Invalid domain format: {self.domain}")

        if self.hostname and not _LABEL_RE.match(self.hostname):
            errors.append(
                f"OTS_HOSTNAME must be a single DNS label, got: {self.hostname}"
            )

        if not self.database_url:
            errors.append("OTS_DATABASE_URL must not be empty")

        for name, value in (
            ("OTS_CERT_FILENAME", self.cert_filename),
            ("OTS_KEY_FILENAME", self.key_filename),
        ):
            if not value:
                errors.append(f"{name} must not be empty")

        return errors

    def log_configuration(self):
        """Log the current configuration (without sensitive data)."""
        logger.info("Server configuration loaded from environment variables:")
        logger.info(f"  Host: {self.host}")
        logger.info(f"  Port: {self.port}")
        logger.info(f"  Log Level: {self.log_level}")
        logger.info(f"  Domain: {self.domain}")
        logger.info(f"  Hostname: {self.hostname or 'generated'}")
        logger.info(f"  Interface: {self.interface or 'auto-detect'}")
        if self.server_ip:
            logger.info(f"  Server IP: {self.server_ip}")
        # Drop any password from the URL
        logger.info(f"  Database: {self.database_url.split('@')[-1]}")
        logger.info(f"  Certificate filename: {self.cert_filename}")
        logger.info(f"  Private key filename: {self.key_filename}")
        logger.info(f"  CSR filename: {self.csr_filename}")
        logger.info(f"  TLS: {'enabled' if self.tls_enabled else 'disabled'}")
