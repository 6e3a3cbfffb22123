"""
IdempotencyGate -- exactly one ledger effect per idempotency key.

Responsibility:
    ``admit`` classifies an incoming request as FRESH, REPLAY (same key,
    same request hash: return the stored response verbatim) or CONFLICT
    (same key, different hash: client bug, fail loudly).  ``record`` stores
    the response of a successful FRESH request.

Architecture position:
    Kernel > Services -- imperative shell.  Storage is behind the
    ``IdempotencyStore`` protocol: ``SqlAlchemyIdempotencyStore`` in
    production, ``InMemoryIdempotencyStore`` for tests and tooling.

Invariants enforced:
    - A stored snapshot is never overwritten.
    - ``admit`` happens before validation and ``record`` after the journal
      insert, in the same transaction.  If two first submissions race, the
      unique constraint lets one ``record`` win; the loser raises
      ``ConcurrentSubmissionError`` (same payload) or
      ``IdempotencyConflictError`` (different payload) so its transaction,
      including its journal insert, rolls back.
    - Keys are scoped by (tenant_id, company_id).

Failure modes:
    - IdempotencyConflictError from ``record`` on a lost race with a
      different payload.
    - ConcurrentSubmissionError from ``record`` on a lost race with the
      same payload.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gl_kernel.domain.clock import Clock, SystemClock
from gl_kernel.exceptions import ConcurrentSubmissionError, IdempotencyConflictError
from gl_kernel.logging_config import get_logger
from gl_kernel.models.idempotency import IdempotencyRecordModel

logger = get_logger("services.idempotency")


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    request_hash: str
    response_snapshot: dict[str, Any]
    created_at: datetime | None = None


class AdmissionKind(str, Enum):
    FRESH = "fresh"
    REPLAY = "replay"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Admission:
    """Answer from ``IdempotencyGate.admit``.

    ``record`` is set for REPLAY and CONFLICT.
    """

    kind: AdmissionKind
    key: str
    request_hash: str
    record: IdempotencyRecord | None = None

    @property
    def is_fresh(self) -> bool:
        return self.kind == AdmissionKind.FRESH

    @property
    def stored_response(self) -> dict[str, Any] | None:
        return self.record.response_snapshot if self.record else None

    def conflict_error(self) -> IdempotencyConflictError:
        if self.kind != AdmissionKind.CONFLICT or self.record is None:
            raise ValueError(
                f"Admission for key {self.key!r} is {self.kind.value}, not a conflict"
            )
        return IdempotencyConflictError(
            self.key, self.record.request_hash, self.request_hash
        )


class IdempotencyStore(Protocol):
    def get(self, tenant_id: str, company_id: str, key: str) -> IdempotencyRecord | None:
        ...

    def insert(
        self,
        tenant_id: str,
        company_id: str,
        record: IdempotencyRecord,
    ) -> IdempotencyRecord:
        """Insert ``record`` unless the key exists; return the stored row."""
        ...


class InMemoryIdempotencyStore:
    """Process-local store.  Insert-if-absent under a lock."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], IdempotencyRecord] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str, company_id: str, key: str) -> IdempotencyRecord | None:
        return self._records.get((tenant_id, company_id, key))

    def insert(
        self,
        tenant_id: str,
        company_id: str,
        record: IdempotencyRecord,
    ) -> IdempotencyRecord:
        with self._lock:
            return self._records.setdefault((tenant_id, company_id, record.key), record)

    def __len__(self) -> int:
        return len(self._records)


class SqlAlchemyIdempotencyStore:
    """Store backed by ``idempotency_records`` in the caller's transaction."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def get(self, tenant_id: str, company_id: str, key: str) -> IdempotencyRecord | None:
        row = self._session.scalars(
            select(IdempotencyRecordModel).where(
                IdempotencyRecordModel.tenant_id == tenant_id,
                IdempotencyRecordModel.company_id == company_id,
                IdempotencyRecordModel.key == key,
            )
        ).first()
        return _to_record(row) if row is not None else None

    def insert(
        self,
        tenant_id: str,
        company_id: str,
        record: IdempotencyRecord,
    ) -> IdempotencyRecord:
        row = IdempotencyRecordModel(
            tenant_id=tenant_id,
            company_id=company_id,
            key=record.key,
            request_hash=record.request_hash,
            response_snapshot=record.response_snapshot,
            created_at=record.created_at or self._clock.now(),
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(row)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            # Another transaction inserted the key first; return its row.
            savepoint.rollback()
            logger.debug("idempotency_insert_race", extra={"key": record.key})
            existing = self.get(tenant_id, company_id, record.key)
            if existing is None:
                raise
            return existing
        return _to_record(row)


def _to_record(row: IdempotencyRecordModel) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row.key,
        request_hash=row.request_hash,
        response_snapshot=dict(row.response_snapshot),
        created_at=row.created_at,
    )


class IdempotencyGate:
    """Admit/record protocol over an ``IdempotencyStore``.

    Contract:
        Call ``admit`` before any validation.  On FRESH, run the pipeline
        and, on success only, call ``record`` with the response snapshot.
        Failed requests are not recorded, so a corrected retry under the
        same key is processed normally.
    """

    def __init__(self, store: IdempotencyStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def admit(
        self, tenant_id: str, company_id: str, key: str, request_hash: str
    ) -> Admission:
        existing = self._store.get(tenant_id, company_id, key)
        if existing is None:
            return Admission(AdmissionKind.FRESH, key, request_hash)
        if existing.request_hash == request_hash:
            return Admission(AdmissionKind.REPLAY, key, request_hash, existing)
        return Admission(AdmissionKind.CONFLICT, key, request_hash, existing)

    def record(
        self,
        tenant_id: str,
        company_id: str,
        key: str,
        request_hash: str,
        response_snapshot: dict[str, Any],
    ) -> IdempotencyRecord:
        """
        Store the response for ``key``.

        Raises:
            IdempotencyConflictError: A concurrent request stored a
                different payload under the key first.
            ConcurrentSubmissionError: A concurrent request with the same
                payload stored its response first.
        """
        candidate = IdempotencyRecord(
            key=key,
            request_hash=request_hash,
            response_snapshot=response_snapshot,
            created_at=self._clock.now(),
        )
        stored = self._store.insert(tenant_id, company_id, candidate)
        if stored.response_snapshot == response_snapshot and stored.request_hash == request_hash:
            return stored

        if stored.request_hash != request_hash:
            raise IdempotencyConflictError(key, stored.request_hash, request_hash)
        raise ConcurrentSubmissionError(key)
