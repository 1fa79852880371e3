"""
Signup register with signed counts.

Two implementations, one chosen at startup and fixed for the life of the
process:
- InMemorySignupRegister: a process-local integer (resets on restart)
- PersistedSignupRegister: one row per signup, counted with an aggregate query

Persisted-mode consistency contract: the insert and the count are two
independent statements, and the count may be served from a replica. The
value returned by increment_signup() can include other callers' concurrent
inserts, and get_signed_count() right after an increment can lag behind it
while the replica catches up. Both are accepted, not bugs.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func

from enclave.config import Settings
from enclave.database import Database
from enclave.exceptions import ResetNotAllowed
from enclave.models.audit import AuditAction
from enclave.models.domain import Signup
from enclave.models.enums import SignupMode
from enclave.services.audit_ledger import AuditLedger
from enclave.services.receipts import hash_user_id
from enclave.services.signing import SigningService
from enclave.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedCount:
    count: int
    signature: str
    timestamp: str

    def message(self) -> str:
        return count_message(self.count, self.timestamp)


def count_message(count: int, timestamp: str) -> str:
    return f"count:{count}|timestamp:{timestamp}"


class SignupRegister(ABC):
    """Counts signups and signs the current total."""

    mode: SignupMode

    def __init__(self, signer: SigningService, ledger: AuditLedger, production: bool = False):
        self.signer = signer
        self.ledger = ledger
        self.production = production

    @abstractmethod
    def increment_signup(self, user_id: Optional[str] = None) -> int:
        """Record one signup and return the resulting count."""

    @abstractmethod
    def count(self) -> int:
        """Current count without a signature."""

    @abstractmethod
    def _clear(self) -> None:
        ...

    def get_signed_count(self) -> SignedCount:
        """
        Current count with a signature over `count:<n>|timestamp:<t>`.

        The signature proves the count came from this enclave's key.
        """
        count = self.count()
        timestamp = isoformat_z(utcnow())
        signature = self.signer.sign(count_message(count, timestamp))
        return SignedCount(count=count, signature=signature, timestamp=timestamp)

    def reset(self) -> None:
        """Reset the register. Only allowed outside production."""
        if self.production:
            raise ResetNotAllowed("Cannot reset signup counter in production")
        self._clear()
        logger.info("Signup register reset", extra={"mode": self.mode.value})


class InMemorySignupRegister(SignupRegister):
    mode = SignupMode.IN_MEMORY

    def __init__(self, signer: SigningService, ledger: AuditLedger, production: bool = False):
        super().__init__(signer, ledger, production)
        self._count = 0
        self._lock = threading.Lock()

    def increment_signup(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            self._count += 1
            count = self._count
        logger.info("Signup count incremented to %d", count)
        self.ledger.try_append(AuditAction.SIGNUP_RECORDED, {"mode": self.mode.value, "count": count})
        return count

    def count(self) -> int:
        return self._count

    def _clear(self) -> None:
        with self._lock:
            self._count = 0


class PersistedSignupRegister(SignupRegister):
    mode = SignupMode.PERSISTED

    def __init__(
        self,
        database: Database,
        signer: SigningService,
        ledger: AuditLedger,
        source_id: Optional[str] = None,
        production: bool = False
    ):
        super().__init__(signer, ledger, production)
        self.database = database
        self.source_id = source_id

    def increment_signup(self, user_id: Optional[str] = None) -> int:
        """
        Insert a signup row and return the aggregate count.

        Raises StorageUnavailable if the insert fails.
        """
        # Anonymous signups still get a distinct, non-reversible row key
        user_id_hash = hash_user_id(user_id or f"anonymous_{int(time.time() * 1000)}")

        with self.database.transaction() as session:
            session.add(Signup(user_id_hash=user_id_hash, source_id=self.source_id))

        count = self.count()
        logger.info("Signup persisted, count is %d", count)
        self.ledger.try_append(
            AuditAction.SIGNUP_RECORDED,
            {"mode": self.mode.value, "userIdHash": user_id_hash, "sourceId": self.source_id},
        )
        return count

    def count(self) -> int:
        with self.database.read() as session:
            return session.query(func.count(Signup.id)).scalar() or 0

    def _clear(self) -> None:
        with self.database.transaction() as session:
            session.query(Signup).delete()


def select_signup_register(
    database: Optional[Database],
    settings: Settings,
    signer: SigningService,
    ledger: AuditLedger
) -> SignupRegister:
    """Pick the register implementation once, from storage availability."""
    if database is None:
        logger.info("No storage, signup register is in-memory")
        return InMemorySignupRegister(signer, ledger, production=settings.is_production)

    logger.info("Signup register is persisted")
    return PersistedSignupRegister(
        database,
        signer,
        ledger,
        source_id=settings.enclave_id,
        production=settings.is_production,
    )

