"""
Error taxonomy for hostname and certificate provisioning.

Every failure a request can hit is a ProvisioningError carrying a
human-readable message, whether the caller may retry, and the HTTP status
the API layer reports it with.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


# Input validation


class ValidationError(ProvisioningError):
    status_code = 400


class InvalidIdentity(ValidationError):
    pass


class NonPrivateAddress(ValidationError):
    pass


class InvalidAddress(NonPrivateAddress):
    pass


class InvalidCSR(ValidationError):
    pass


class InvalidRequest(ValidationError):
    pass


# State conflicts


class ConflictError(ProvisioningError):
    status_code = 409


class DuplicateIdentity(ConflictError):
    pass


class DuplicateHostname(ConflictError):
    pass


class AlreadyRegistered(ConflictError):
    pass


class NotFound(ProvisioningError):
    status_code = 404


class UnknownClient(NotFound):
    pass


# External dependencies


class DependencyError(ProvisioningError):
    status_code = 503
    retryable = True


class ProviderError(DependencyError):
    """The DNS provider failed or rejected a request."""


class StoreError(DependencyError):
    """The registration database failed."""


class HostnameExhausted(StoreError):
    retryable = False


class PersistenceError(ProvisioningError):
    """A certificate or key could not be written to disk."""

    status_code = 500


# Domain validation (ACME DNS-01)


class DomainValidationError(ProvisioningError):
    status_code = 502


class NoDnsChallenge(DomainValidationError):
    pass


class ChallengePublicationTimeout(DomainValidationError):
    status_code = 504
    retryable = True


class ChallengeRejected(DomainValidationError):
    pass


class AuthorizationTimeout(DomainValidationError):
    status_code = 504
    retryable = True


class AuthorizationInvalid(DomainValidationError):
    pass


class IssuanceError(DomainValidationError):
    pass


class IssuanceDeadlineExceeded(DomainValidationError):
    status_code = 504
    retryable = True


class IssuanceInProgress(DomainValidationError):
    status_code = 503
    retryable = True
