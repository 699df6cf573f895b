"""
Persistent registry of clients and the hostnames allocated to them.

Backed by SQLAlchemy (SQLite by default). Hostname allocation and the insert
that claims it run inside one process-wide critical section so two
concurrent registrations can never be handed the same hostname.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from sqlalchemy import Column, String, create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import (
    DuplicateHostname,
    DuplicateIdentity,
    HostnameExhausted,
    NotFound,
    StoreError,
)
from .names import generate_hostname

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_MAX_ALLOCATION_ATTEMPTS = 1000


class ClientModel(Base):
    """A registered client. Rows are never updated or deleted."""

    __tablename__ = "clients"

    uuid = Column(String, primary_key=True)
    hostname = Column(String, unique=True, nullable=False, index=True)
    ip = Column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<Client(uuid={self.uuid}, hostname={self.hostname}, ip={self.ip})>"


@dataclass(frozen=True)
class ClientRecord:
    """Immutable view of a client registration."""

    identity: str
    hostname: str
    ip: str

    @classmethod
    def from_model(cls, model: ClientModel) -> "ClientRecord":
        return cls(identity=model.uuid, hostname=model.hostname, ip=model.ip)


def create_store_engine(database_url: str):
    """Create an engine usable from the server's worker threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


class RegistrationStore:
    """Allocates unique hostnames and persists client bindings."""

    def __init__(
        self,
        database_url: str = "sqlite:///./ots-cert.db",
        name_generator: Callable[[], str] = generate_hostname,
        max_allocation_attempts: int = DEFAULT_MAX_ALLOCATION_ATTEMPTS,
    ):
        """
        Open the store, creating the clients table if required.

        Args:
            database_url: SQLAlchemy database URL
            name_generator: Callable returning candidate hostname labels
            max_allocation_attempts: Candidates to try before giving up

        Raises:
            StoreError: If the database cannot be opened
        """
        self.database_url = database_url
        self.name_generator = name_generator
        self.max_allocation_attempts = max_allocation_attempts
        # Reentrant so allocate_hostname() can be called inside register_client()
        self._lock = threading.RLock()

        try:
            self.engine = create_store_engine(database_url)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Can't open the registration database: {e}")
            raise StoreError(f"Can't open the registration database: {e}") from e

        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        logger.debug(f"Registration store ready ({database_url.split('@')[-1]})")

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def hostname_taken(self, hostname: str) -> bool:
        """Check whether a hostname has already been handed out."""
        try:
            with self._session() as session:
                count = session.scalar(
                    select(func.count())
                    .select_from(ClientModel)
                    .where(ClientModel.hostname == hostname)
                )
                return bool(count)
        except SQLAlchemyError as e:
            logger.error(f"Error checking hostname '{hostname}': {e}")
            raise StoreError("There was an error checking the database") from e

    def identity_registered(self, identity: str) -> bool:
        try:
            with self._session() as session:
                return session.get(ClientModel, identity) is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking identity '{identity}': {e}")
            raise StoreError("There was an error checking the database") from e

    def allocate_hostname(self) -> str:
        """
        Generate a hostname that no stored client already holds.

        Raises:
            HostnameExhausted: If no free candidate is found in the budget
            StoreError: On database failure
        """
        with self._lock:
            for _ in range(self.max_allocation_attempts):
                hostname = self.name_generator()
                logger.debug(f"Hostname generated: {hostname}")
                if not self.hostname_taken(hostname):
                    logger.debug("Hostname is unique")
                    return hostname
                logger.debug("Hostname already exists, going around again")

        raise HostnameExhausted(
            f"No free hostname found after {self.max_allocation_attempts} attempts"
        )

    def register_client(
        self, identity: str, ip: str, hostname: Optional[str] = None
    ) -> ClientRecord:
        """
        Persist a new client, allocating its hostname in the same critical section.

        Args:
            identity: Canonical client identity
            ip: Address the client's hostname should resolve to
            hostname: Use this label instead of allocating one

        Returns:
            The stored registration

        Raises:
            DuplicateIdentity: If the identity is already registered
            DuplicateHostname: If an explicit hostname is already taken
            StoreError: On database failure
        """
        with self._lock:
            if self.identity_registered(identity):
                raise DuplicateIdentity(
                    "The client with provided UUID is already registered"
                )

            explicit = hostname is not None
            if explicit and self.hostname_taken(hostname):
                raise DuplicateHostname(f"Hostname {hostname} is already registered")

            for _ in range(self.max_allocation_attempts):
                candidate = hostname if explicit else self.allocate_hostname()
                try:
                    with self._session() as session:
                        session.add(
                            ClientModel(uuid=identity, hostname=candidate, ip=ip)
                        )
                    logger.info(f"Registered client {identity} as {candidate} ({ip})")
                    return ClientRecord(identity=identity, hostname=candidate, ip=ip)
                except IntegrityError as e:
                    # Another process may share the database; find out which
                    # unique column lost the race.
                    if self.identity_registered(identity):
                        raise DuplicateIdentity(
                            "The client with provided UUID is already registered"
                        ) from e
                    if explicit:
                        raise DuplicateHostname(
                            f"Hostname {candidate} is already registered"
                        ) from e
                    logger.debug(f"Hostname {candidate} claimed concurrently, retrying")
                except SQLAlchemyError as e:
                    logger.error(f"Could not insert data into the database: {e}")
                    raise StoreError("Could not store the client registration") from e

        raise HostnameExhausted("Could not claim a free hostname")

    def lookup_client(self, identity: str) -> ClientRecord:
        """
        Load a registration by identity.

        Raises:
            NotFound: If the identity was never registered
            StoreError: On database failure
        """
        logger.debug(f"Loading client from database, UUID: {identity}")
        try:
            with self._session() as session:
                model = session.get(ClientModel, identity)
                if model is None:
                    raise NotFound(f"Client {identity} not found")
                return ClientRecord.from_model(model)
        except SQLAlchemyError as e:
            logger.error(f"Error loading client from database: {e}")
            raise StoreError("Error loading client from database") from e

    def count(self) -> int:
        try:
            with self._session() as session:
                return session.scalar(select(func.count()).select_from(ClientModel))
        except SQLAlchemyError as e:
            raise StoreError("Error counting clients") from e

    def close(self) -> None:
        self.engine.dispose()
