"""
Entitlement Store repository.

All writes to ``user_entitlement`` go through this module:

- ``transaction(fn)`` runs an optimistic read-modify-write. ``fn`` reads
  snapshots and stages merge-writes; on commit every staged write is guarded
  by the version that was read, so a concurrent writer makes the commit fail
  with ``TransactionConflict``. The whole attempt is rolled back and ``fn``
  is run again against fresh reads.
- ``decrement_token`` is a single guarded UPDATE that can never take the
  balance below zero.

One store per request session; handlers receive it through dependency
injection instead of a module-level handle.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from rockid.core.config import settings
from rockid.models.entitlement import UserEntitlement
from rockid.services.errors import TransactionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

entitlement_table = UserEntitlement.__table__

# Columns callers may stage through Transaction.set
WRITABLE_FIELDS = frozenset({
    "tokens",
    "is_premium",
    "subscription_active",
    "subscription_product_id",
    "last_subscription_event",
    "last_grant_at",
    "last_cancellation_at",
    "transferred_to",
})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _read_row(session: Session, user_id: str) -> Optional[Dict[str, Any]]:
    row = session.execute(
        select(entitlement_table).where(entitlement_table.c.user_id == user_id)
    ).mappings().first()
    return dict(row) if row else None


class Transaction:
    """Reads and staged writes for one attempt of ``EntitlementStore.transaction``."""

    def __init__(self, session: Session):
        self._session = session
        self._read_versions: Dict[str, Optional[int]] = {}
        self._writes: Dict[str, Dict[str, Any]] = {}

    def get(self, user_id: str) -> Optional[UserEntitlement]:
        """Read a detached snapshot; None if the user has no record yet."""
        row = _read_row(self._session, user_id)
        self._read_versions[user_id] = row["version"] if row else None
        if row is None:
            return None
        return UserEntitlement(**row)

    def set(self, user_id: str, **fields: Any) -> None:
        """Stage a merge-write. The record must have been read in this transaction."""
        if user_id not in self._read_versions:
            raise RuntimeError(f"Entitlement {user_id} must be read before it is written")
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entitlement fields: {sorted(unknown)}")
        self._writes.setdefault(user_id, {}).update(fields)

    def commit(self) -> None:
        now = _utc_now()
        for user_id, fields in self._writes.items():
            read_version = self._read_versions[user_id]
            if read_version is None:
                row = UserEntitlement(user_id=user_id, created_at=now, updated_at=now, **fields)
                try:
                    self._session.execute(insert(entitlement_table).values(**row.model_dump()))
                except IntegrityError as e:
                    # Created concurrently; the retry reads it back
                    raise TransactionConflict(user_id) from e
            else:
                result = self._session.execute(
                    update(entitlement_table)
                    .where(
                        entitlement_table.c.user_id == user_id,
                        entitlement_table.c.version == read_version,
                    )
                    .values(**fields, updated_at=now, version=read_version + 1)
                )
                if result.rowcount != 1:
                    raise TransactionConflict(user_id)
        self._session.commit()


class EntitlementStore:
    """Repository over the user_entitlement table, bound to one session."""

    def __init__(self, session: Session, max_attempts: Optional[int] = None):
        self.session = session
        self.max_attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS

    def get(self, user_id: str) -> Optional[UserEntitlement]:
        row = _read_row(self.session, user_id)
        return UserEntitlement(**row) if row else None

    def ensure(self, user_id: str, starting_tokens: int) -> tuple[UserEntitlement, bool]:
        """
        Create the record with the starting grant if it does not exist.

        Returns (entitlement, created). An existing record is returned unchanged.
        """
        existing = self.get(user_id)
        if existing:
            return existing, False

        now = _utc_now()
        row = UserEntitlement(
            user_id=user_id,
            tokens=starting_tokens,
            is_premium=False,
            subscription_active=False,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.execute(insert(entitlement_table).values(**row.model_dump()))
            self.session.commit()
        except IntegrityError:
            # Created concurrently by another request
            self.session.rollback()
            return self.get(user_id), False
        return self.get(user_id), True

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        """
        Run ``fn`` as an atomic read-modify-write, retrying on conflict.

        Raises TransactionConflict once ``max_attempts`` attempts have all lost
        their race.
        """
        last_conflict: Optional[TransactionConflict] = None
        for attempt in range(1, self.max_attempts + 1):
            txn = Transaction(self.session)
            try:
                result = fn(txn)
                txn.commit()
                return result
            except TransactionConflict as e:
                self.session.rollback()
                last_conflict = e
                logger.warning(
                    "Entitlement transaction conflict, retrying",
                    extra={"user_id": e.user_id, "attempt": attempt, "max_attempts": self.max_attempts},
                )
            except Exception:
                self.session.rollback()
                raise

        assert last_conflict is not None
        raise last_conflict

    def decrement_token(self, user_id: str) -> Optional[int]:
        """
        Take one token if the balance is positive.

        Returns the new balance, or None when nothing was decremented (no
        record, or balance already zero).
        """
        row = self.session.execute(
            update(entitlement_table)
            .where(
                entitlement_table.c.user_id == user_id,
                entitlement_table.c.tokens > 0,
            )
            .values(
                tokens=entitlement_table.c.tokens - 1,
                version=entitlement_table.c.version + 1,
                updated_at=_utc_now(),
            )
            .returning(entitlement_table.c.tokens)
        ).first()
        self.session.commit()
        return row[0] if row else None
