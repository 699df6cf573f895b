"""
Idempotent reconciliation of typed DNS records in one zone.

Remote record identifiers are never cached: every operation starts with a
fresh lookup by (type, name) so out-of-band edits cannot cause lost updates.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import dns.exception
import dns.resolver

from .errors import ProviderError

logger = logging.getLogger(__name__)

A_RECORD = "A"
TXT_RECORD = "TXT"


@dataclass(frozen=True)
class DNSRecord:
    record_type: str
    name: str
    content: str
    record_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DNSRecord":
        return cls(
            record_type=data.get("type", ""),
            name=data.get("name", ""),
            content=data.get("content", ""),
            record_id=data.get("id"),
        )


class DNSProvider(Protocol):
    def list_records(self, record_type: str, name: str) -> List[DNSRecord]: ...

    def create_record(
        self, record_type: str, name: str, content: str, ttl: int = 60
    ) -> DNSRecord: ...

    def update_record(self, record: DNSRecord, content: str, ttl: int = 60) -> DNSRecord: ...

    def delete_record(self, record: DNSRecord) -> None: ...


class DNSRecordManager:
    """Create-or-update, existence and delete operations over a DNS provider."""

    def __init__(
        self,
        provider: DNSProvider,
        ttl: int = 60,
        nameservers: Optional[Sequence[str]] = None,
    ):
        self.provider = provider
        self.ttl = ttl
        self.nameservers = list(nameservers) if nameservers else None

    def reconcile(self, record_type: str, name: str, content: str) -> List[DNSRecord]:
        """
        Make every (type, name) record carry content, creating one if none exist.

        Returns:
            The records as they are after reconciliation

        Raises:
            ProviderError: If the provider lookup or write fails
        """
        logger.debug(
            f"Create or update DNS record, {name} containing {content} of type {record_type}"
        )
        try:
            existing = self.provider.list_records(record_type, name)
        except ProviderError as e:
            raise ProviderError(
                f"Searching for existing {record_type} record {name} failed: {e}"
            ) from e

        if existing:
            logger.debug(f"{len(existing)} record(s) already exist - doing an update")
            updated = []
            for record in existing:
                if record.content == content:
                    updated.append(record)
                    continue
                logger.debug(
                    f"Record to update - {record.name}: {record.content} ({record.record_id})"
                )
                try:
                    updated.append(self.provider.update_record(record, content, self.ttl))
                except ProviderError as e:
                    raise ProviderError(
                        f"Failed to update the {record_type} record {name}: {e}"
                    ) from e
            return updated

        logger.debug("Record does not already exist - creating it")
        try:
            return [self.provider.create_record(record_type, name, content, self.ttl)]
        except ProviderError as e:
            raise ProviderError(f"Failed to add the {record_type} record {name}: {e}") from e

    def exists(self, record_type: str, name: str) -> bool:
        """Polling primitive: a failed lookup counts as not found."""
        logger.debug(f"Looking for the record {name} of type {record_type}")
        try:
            return len(self.provider.list_records(record_type, name)) > 0
        except ProviderError as e:
            logger.debug(f"There was an error looking up {name}: {e}")
            return False

    def delete(self, record_type: str, name: str) -> int:
        """
        Delete every (type, name) record. Nothing to delete is not an error.

        Returns:
            Number of records deleted
        """
        logger.debug(f"Delete is fetching a {record_type} record with the name {name}")
        try:
            records = self.provider.list_records(record_type, name)
        except ProviderError as e:
            logger.debug(f"The record wasn't found, nothing to delete: {e}")
            return 0

        if not records:
            logger.debug("No records returned, nothing to delete")
            return 0

        for record in records:
            logger.debug(
                f"Record to delete - {record.name}: {record.content} ({record.record_id})"
            )
            try:
                self.provider.delete_record(record)
            except ProviderError as e:
                raise ProviderError(f"Something went wrong with the delete: {e}") from e
        return len(records)

    def resolves(
        self, record_type: str, name: str, expected: Optional[str] = None
    ) -> bool:
        """
        Check visibility through DNS resolvers rather than the provider API.

        Args:
            record_type: Record type to resolve
            name: Name to resolve
            expected: Content that must be among the answers, if given
        """
        resolver = dns.resolver.Resolver()
        if self.nameservers:
            resolver.nameservers = self.nameservers

        try:
            answers = resolver.resolve(name, record_type)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
            logger.debug(f"DNS record not yet propagated for {name}")
            return False
        except dns.exception.Timeout:
            logger.debug(f"DNS lookup timed out for {name}")
            return False

        if expected is None:
            return True
        for answer in answers:
            # TXT answers come back quoted
            if answer.to_text().strip('"') == expected:
                logger.info(f"DNS propagation confirmed for {name}")
                return True
            logger.debug(f"Found {record_type} record for {name}: {answer} (expected: {expected})")
        return False
