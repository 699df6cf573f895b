"""
Reference client for the OTS certificate server.

Registers this machine, obtains a certificate for the hostname it is given
and serves a page over HTTPS on that hostname.
"""

import argparse
import base64
import logging
import os
import sys
import uuid
from dataclasses import dataclass
from typing import List, Optional

import requests
import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from log import configure_logging
from provisioning import crypto_utils
from provisioning.cert_manager import write_atomic
from provisioning.errors import PersistenceError
from provisioning.network import get_ip
from version import __version__

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = (
    "Congratulations, you should be viewing this over HTTPS on your custom domain.\n"
)


class ClientError(Exception):
    """A step of the client flow failed."""


@dataclass
class ClientConfig:
    """Client configuration loaded from environment variables."""

    registration_url: str
    certificate_url: str
    cert_filename: str
    key_filename: str
    csr_filename: str
    port: int
    interface: Optional[str]

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            registration_url=os.getenv(
                "OTS_CLIENT_REGISTRATION_URL", "https://localhost:8443/register"
            ),
            certificate_url=os.getenv(
                "OTS_CLIENT_CERTIFICATE_URL", "https://localhost:8443/get_certificate"
            ),
            cert_filename=os.getenv("OTS_CLIENT_CERT_FILENAME", "ots-cert-client.crt"),
            key_filename=os.getenv("OTS_CLIENT_KEY_FILENAME", "ots-cert-client.key"),
            csr_filename=os.getenv("OTS_CLIENT_CSR_FILENAME", "ots-cert-client.csr"),
            port=int(os.getenv("OTS_CLIENT_PORT", "8444")),
            interface=os.getenv("OTS_INTERFACE") or None,
        )

    def log_configuration(self):
        logger.info("Client configuration:")
        logger.info(f"  Client registration URL: {self.registration_url}")
        logger.info(f"  Certificate request URL: {self.certificate_url}")
        logger.info(f"  Interface: {self.interface or 'auto-detect'}")
        logger.info(f"  Web server running on port: {self.port}")
        logger.info(f"  Certificate filename: {self.cert_filename}")
        logger.info(f"  Private key filename: {self.key_filename}")
        logger.info(f"  CSR filename: {self.csr_filename}")


class OTSClient:
    """Talks to the certificate server's registration and certificate endpoints."""

    def __init__(
        self,
        config: ClientConfig,
        session: Optional[requests.Session] = None,
        timeout: float = 300.0,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, url: str, payload: dict) -> dict:
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ClientError(f"Could not connect to server, error: {e}") from e

        logger.debug(f"Response Status: {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise ClientError(
                f"Server returned an unparsable response ({response.status_code})"
            ) from e
        logger.debug(f"Response Body: {body}")

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else body
            raise ClientError(str(message or f"Request failed ({response.status_code})"))
        return body

    def register(self, client_id: str, ip: str) -> str:
        """Register and return the fully-qualified hostname allocated."""
        body = self._post(
            self.config.registration_url, {"clientID": client_id, "ip": ip}
        )
        hostname = body.get("hostname")
        if not hostname:
            raise ClientError("The server did not return a hostname")
        return hostname

    def request_certificate(self, client_id: str, csr_der: bytes) -> List[bytes]:
        """Request a certificate and return the DER chain, leaf first."""
        body = self._post(
            self.config.certificate_url,
            {"clientID": client_id, "csr": base64.b64encode(csr_der).decode("ascii")},
        )
        certificates = body.get("certificates") or []
        if not certificates:
            raise ClientError("The server returned no certificates")
        try:
            return [base64.b64decode(cert) for cert in certificates]
        except (TypeError, ValueError) as e:
            raise ClientError(f"The server returned invalid certificate data: {e}") from e

    def provision(self, ip: str) -> str:
        """
        Run the full flow: register, write a key and CSR, fetch the certificate.

        Returns:
            The hostname the certificate was issued for
        """
        client_id = str(uuid.uuid4())
        logger.debug(f"UUID: {client_id}")

        hostname = self.register(client_id, ip)
        logger.info(f"The hostname is: {hostname}")

        logger.debug(f"Writing private key to: {self.config.key_filename}")
        key = crypto_utils.generate_private_key()
        csr = crypto_utils.generate_csr(hostname, key)
        try:
            write_atomic(
                self.config.key_filename, crypto_utils.private_key_to_pem(key), mode=0o600
            )
            write_atomic(self.config.csr_filename, crypto_utils.csr_to_pem(csr))
        except PersistenceError as e:
            raise ClientError(e.message) from e

        certificates = self.request_certificate(client_id, crypto_utils.csr_to_der(csr))
        logger.info("The certificate was generated")

        logger.debug(f"Writing the certificate to: {self.config.cert_filename}")
        try:
            chain_pem = crypto_utils.der_chain_to_pem(certificates)
        except ValueError as e:
            raise ClientError(f"The server returned an invalid certificate: {e}") from e
        try:
            write_atomic(self.config.cert_filename, chain_pem)
        except PersistenceError as e:
            raise ClientError(e.message) from e
        return hostname


def create_client_app() -> FastAPI:
    app = FastAPI(title="OTS Certificate Client", version=__version__)

    @app.get("/", response_class=PlainTextResponse)
    async def congratulations():
        return SUCCESS_MESSAGE

    return app


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Run the OTS certificate demo client.")
    parser.add_argument(
        "--interface",
        type=str,
        help="The name of the interface to use if there are multiple.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("OTS_LOG_LEVEL", "info"),
        choices=["critical", "error", "warning", "info", "debug", "trace"],
    )
    parser.add_argument(
        "--dump-config", action="store_true", help="Log the configuration and exit."
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    if args.interface:
        config.interface = args.interface
        logger.debug(f"Forcing the use of the interface: {config.interface}")

    if args.dump_config:
        config.log_configuration()
        return

    try:
        ip = get_ip(config.interface)
        hostname = OTSClient(config).provision(ip)
    except (ClientError, RuntimeError) as e:
        logger.error(f"{e}")
        sys.exit(1)

    logger.info(f"Starting web server on: https://{hostname}:{config.port}")
    uvicorn.run(
        create_client_app(),
        host="0.0.0.0",
        port=config.port,
        ssl_certfile=config.cert_filename,
        ssl_keyfile=config.key_filename,
        log_level=args.log_level,
        log_config=None,
    )


if __name__ == "__main__":
    main()
