"""
ACME DNS-01 domain validation.

Obtains a CA-signed certificate for a CSR by proving control of the parent
zone: register a throwaway account, order, publish the DNS-01 proof as a
TXT record, wait for it to become visible, answer the challenge, poll the
authorization and finalize the order.

Only one session may run per domain at a time; CertificateManager enforces
that, this module does not.
"""

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import josepy as jose
import requests
from acme import challenges, client, errors as acme_errors, messages

from . import crypto_utils
from .dns_records import TXT_RECORD, DNSRecordManager
from .errors import (
    AuthorizationInvalid,
    AuthorizationTimeout,
    ChallengePublicationTimeout,
    ChallengeRejected,
    DomainValidationError,
    InvalidCSR,
    IssuanceError,
    NoDnsChallenge,
    ProviderError,
)
from .retry import Clock, Deadline, RetryPolicy, poll

logger = logging.getLogger(__name__)

LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

USER_AGENT = "ots-cert-server"

# Errors the ACME library and its transport raise for CA-side failures
ACME_ERRORS = (acme_errors.Error, messages.Error, requests.exceptions.RequestException)


class ChallengeState(enum.Enum):
    CREATED = "created"
    PROOF_PUBLISHED = "proof-published"
    PROOF_VISIBLE = "proof-visible"
    SUBMITTED = "submitted"
    AUTHORIZED = "authorized"
    FAILED = "failed"


@dataclass
class ChallengeSession:
    """In-memory state of one DNS-01 validation attempt."""

    domain: str
    label: str = ""
    value: str = ""
    state: ChallengeState = ChallengeState.CREATED

    def advance(self, state: ChallengeState) -> None:
        logger.debug(f"Challenge for {self.domain}: {self.state.value} -> {state.value}")
        self.state = state


def default_client_factory(
    directory_url: str, account_key: jose.JWK, user_agent: str = USER_AGENT
) -> client.ClientV2:
    """Build an ACME v2 client for the directory, signing with account_key."""
    net = client.ClientNetwork(account_key, user_agent=user_agent)
    directory = client.ClientV2.get_directory(directory_url, net)
    return client.ClientV2(directory, net=net)


class DomainValidator:
    """Drives the DNS-01 challenge and certificate issuance for one domain at a time."""

    def __init__(
        self,
        dns_manager: DNSRecordManager,
        directory_url: str = LETSENCRYPT_PRODUCTION,
        email: Optional[str] = None,
        propagation_delay: float = 5.0,
        record_retry: RetryPolicy = RetryPolicy(attempts=3, delay=5.0),
        authorization_retry: RetryPolicy = RetryPolicy(attempts=3, delay=2.0),
        issuance_timeout: Optional[float] = 300.0,
        propagation_check: str = "provider",
        clock: Optional[Clock] = None,
        client_factory: Callable[[str, jose.JWK], client.ClientV2] = default_client_factory,
        account_key_size: int = crypto_utils.KEY_SIZE,
    ):
        """
        Initialize the validator.

        Args:
            dns_manager: Publishes and checks the proof TXT record
            directory_url: ACME directory of the certificate authority
            email: Optional contact address for the throwaway account
            propagation_delay: Seconds to wait after publishing the proof
            record_retry: Budget for polling the proof record's visibility
            authorization_retry: Budget for polling the authorization status
            issuance_timeout: Overall deadline per issuance, None for no limit
            propagation_check: "provider" to ask the DNS provider, "resolver"
                to query DNS resolvers for the proof value
            clock: Time source, replaced in tests
            client_factory: Builds the ACME client from directory URL and key
            account_key_size: RSA size of the throwaway account key
        """
        if propagation_check not in ("provider", "resolver"):
            raise ValueError(f"Unknown propagation check: {propagation_check}")
        self.dns_manager = dns_manager
        self.directory_url = directory_url
        self.email = email
        self.propagation_delay = propagation_delay
        self.record_retry = record_retry
        self.authorization_retry = authorization_retry
        self.issuance_timeout = issuance_timeout
        self.propagation_check = propagation_check
        self.clock = clock or Clock()
        self.client_factory = client_factory
        self.account_key_size = account_key_size

    def issue(self, csr_der: bytes, domain: str) -> List[bytes]:
        """
        Obtain a certificate chain for csr_der, proving control of domain.

        Args:
            csr_der: DER (or PEM) encoded CSR naming exactly domain
            domain: Fully-qualified domain name to validate

        Returns:
            DER encoded certificates, leaf first

        Raises:
            InvalidCSR: The CSR is unparsable or names other domains
            NoDnsChallenge: The CA offered no DNS-01 challenge
            ChallengePublicationTimeout: The proof record never became visible
            ChallengeRejected: The CA refused the challenge answer
            AuthorizationTimeout: The authorization never became valid
            AuthorizationInvalid: The CA marked the authorization invalid
            IssuanceError: Finalization failed or returned no certificates
            IssuanceDeadlineExceeded: The overall deadline passed
            ProviderError: The proof record could not be published
        """
        logger.debug(f"Hostname in certificate generation request: {domain}")
        csr_pem = self._checked_csr_pem(csr_der, domain)
        deadline = Deadline(self.clock, self.issuance_timeout)
        session = ChallengeSession(domain=domain)

        try:
            acme_client, account_key = self._register_account()
            deadline.check("ordering")
            order, authzr, challb = self._select_dns_challenge(acme_client, csr_pem, domain)

            session.label = challb.chall.validation_domain_name(domain)
            session.value = challb.chall.validation(account_key)
            logger.debug(f"Creating record {session.label} with value {session.value}")
            self.dns_manager.reconcile(TXT_RECORD, session.label, session.value)
            session.advance(ChallengeState.PROOF_PUBLISHED)

            self._wait_for_proof(session, deadline)
            session.advance(ChallengeState.PROOF_VISIBLE)

            deadline.check("answering the challenge")
            try:
                acme_client.answer_challenge(challb, challb.chall.response(account_key))
            except ACME_ERRORS as e:
                raise ChallengeRejected(f"Can't accept challenge: {e}") from e
            session.advance(ChallengeState.SUBMITTED)

            self._wait_for_authorization(acme_client, authzr, deadline)
            session.advance(ChallengeState.AUTHORIZED)

            return self._finalize(acme_client, order, deadline)
        except Exception:
            session.advance(ChallengeState.FAILED)
            raise
        finally:
            if session.label:
                self._cleanup_proof(session)

    def _checked_csr_pem(self, csr_data: bytes, domain: str) -> bytes:
        try:
            csr = crypto_utils.load_csr(csr_data)
        except ValueError as e:
            raise InvalidCSR(f"Could not parse the CSR: {e}") from e

        names = crypto_utils.csr_dns_names(csr)
        if names != [domain.lower()]:
            raise InvalidCSR(
                f"CSR must name exactly {domain}, found: {', '.join(names) or 'none'}"
            )
        return crypto_utils.csr_to_pem(csr)

    def _register_account(self):
        logger.debug("Generating the ACME account key")
        account_key = jose.JWKRSA(
            key=crypto_utils.generate_private_key(self.account_key_size)
        )
        try:
            acme_client = self.client_factory(self.directory_url, account_key)
            logger.debug("Registering the account")
            acme_client.new_account(
                messages.NewRegistration.from_data(
                    email=self.email, terms_of_service_agreed=True
                )
            )
        except ACME_ERRORS as e:
            raise DomainValidationError(
                f"Can't register an ACME account: {e}", retryable=True
            ) from e
        return acme_client, account_key

    def _select_dns_challenge(self, acme_client, csr_pem: bytes, domain: str):
        logger.debug(f"Authorising {domain}")
        try:
            order = acme_client.new_order(csr_pem)
        except ACME_ERRORS as e:
            raise DomainValidationError(
                f"Can't authorize {domain}: {e}", retryable=True
            ) from e

        for authzr in order.authorizations:
            if authzr.body.identifier.value.lower() != domain.lower():
                continue
            for challb in authzr.body.challenges:
                if isinstance(challb.chall, challenges.DNS01):
                    return order, authzr, challb
            raise NoDnsChallenge(f"No DNS challenge was offered for {domain}")

        raise NoDnsChallenge(f"No authorization was returned for {domain}")

    def _wait_for_proof(self, session: ChallengeSession, deadline: Deadline) -> None:
        logger.debug(
            f"Sleeping {self.propagation_delay} seconds to let the TXT record propagate"
        )
        deadline.sleep(self.propagation_delay, "checking the proof record")

        if self.propagation_check == "resolver":
            def check():
                return self.dns_manager.resolves(TXT_RECORD, session.label, session.value)
        else:
            def check():
                return self.dns_manager.exists(TXT_RECORD, session.label)

        visible = poll(
            check,
            self.record_retry,
            self.clock,
            deadline=deadline,
            description=f"TXT record {session.label}",
        )
        if not visible:
            raise ChallengePublicationTimeout(
                f"TXT record {session.label} not visible after "
                f"{self.record_retry.attempts} attempts"
            )
        logger.debug("TXT record created and visible")

    def _wait_for_authorization(self, acme_client, authzr, deadline: Deadline) -> None:
        state = {"authzr": authzr}

        def check():
            updated, _ = acme_client.poll(state["authzr"])
            state["authzr"] = updated
            status = updated.body.status
            if status == messages.STATUS_INVALID:
                raise AuthorizationInvalid(
                    f"Authorization for {updated.body.identifier.value} is invalid"
                )
            return status == messages.STATUS_VALID

        authorized = poll(
            check,
            self.authorization_retry,
            self.clock,
            deadline=deadline,
            description="ACME authorization",
            retry_on=ACME_ERRORS,
        )
        if not authorized:
            raise AuthorizationTimeout(
                f"Failed authorization after {self.authorization_retry.attempts} attempts"
            )

    def _finalize(self, acme_client, order, deadline: Deadline) -> List[bytes]:
        deadline.check("finalizing the order")
        remaining = deadline.remaining()
        finalize_by = datetime.datetime.now() + datetime.timedelta(
            seconds=remaining if remaining is not None else 90
        )
        try:
            finalized = acme_client.finalize_order(order, finalize_by)
        except ACME_ERRORS as e:
            raise IssuanceError(
                f"Got an error when creating the certificate: {e}"
            ) from e

        fullchain = finalized.fullchain_pem or ""
        if isinstance(fullchain, str):
            fullchain = fullchain.encode()
        try:
            certificates = crypto_utils.split_pem_chain(fullchain) if fullchain else []
        except ValueError as e:
            raise IssuanceError(f"Could not parse the issued certificates: {e}") from e

        logger.debug(f"Certificates returned: {len(certificates)}")
        if not certificates:
            raise IssuanceError("No certificates returned")
        return certificates

    def _cleanup_proof(self, session: ChallengeSession) -> None:
        try:
            self.dns_manager.delete(TXT_RECORD, session.label)
        except ProviderError as e:
            logger.warning(f"Could not remove TXT record {session.label}: {e}")
