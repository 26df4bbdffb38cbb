"""
Workflow instance storage.

Responsibility:
    Holds generic ``WorkflowInstance`` state behind an explicit store
    interface with bounded lifetime.  Nothing in the kernel keeps instances
    in module-level or singleton state.

Architecture position:
    Kernel > Services -- imperative shell.  The orchestrator depends on the
    ``WorkflowInstanceStore`` protocol.

Invariants enforced:
    - Optimistic concurrency: ``put`` of an existing instance only succeeds
      if its ``version`` equals the stored version; the stored version is
      then incremented.
    - Entries expire ``ttl_seconds`` after their last write.  Expired entries
      are invisible to ``get``/``values`` and are removed by
      ``purge_expired``.
    - Callers never share state with the store: instances are copied on
      the way in and on the way out.
    - ``InMemoryInstanceStore`` never holds more than ``max_entries``;
      the least recently used entry is evicted first.

Failure modes:
    - OptimisticLockError on a version mismatch or a duplicate insert.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clinical_kernel.domain.clock import Clock, SystemClock
from clinical_kernel.domain.instance import WorkflowInstance
from clinical_kernel.exceptions import OptimisticLockError
from clinical_kernel.logging_config import get_logger
from clinical_kernel.models.workflow_instance import WorkflowInstanceModel

logger = get_logger("services.instance_store")

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 10_000


class WorkflowInstanceStore(Protocol):
    def get(self, instance_id: str) -> WorkflowInstance | None: ...

    def put(self, instance: WorkflowInstance) -> WorkflowInstance: ...

    def delete(self, instance_id: str) -> bool: ...

    def values(self) -> list[WorkflowInstance]: ...

    def purge_expired(self) -> int: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def _conflict(instance: WorkflowInstance, actual: int | None) -> OptimisticLockError:
    logger.warning(
        "optimistic_lock_conflict",
        extra={
            "instance_id": instance.instance_id,
            "expected_version": instance.version,
            "actual_version": actual,
        },
    )
    return OptimisticLockError(
        "WorkflowInstance",
        instance.instance_id,
        expected_version=instance.version,
        actual_version=actual,
    )


class InMemoryInstanceStore:
    """
    Process-local store with TTL expiry and LRU eviction.

    Contract:
        Thread-safe.  Suitable for a single process and for tests; each
        store is independent and disposable (``clear()``).
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[str, tuple[WorkflowInstance, datetime]] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live(self, instance_id: str, now: datetime) -> WorkflowInstance | None:
        entry = self._entries.get(instance_id)
        if entry is None:
            return None
        instance, expires_at = entry
        if expires_at <= now:
            del self._entries[instance_id]
            logger.debug("instance_expired", extra={"instance_id": instance_id})
            return None
        return instance

    def get(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock:
            instance = self._live(instance_id, self._clock.now())
            if instance is None:
                return None
            self._entries.move_to_end(instance_id)
            return deepcopy(instance)

    def put(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            now = self._clock.now()
            current = self._live(instance.instance_id, now)
            actual = current.version if current is not None else 0
            if actual != instance.version:
                raise _conflict(instance, actual)

            stored = replace(deepcopy(instance), version=instance.version + 1)
            self._entries[instance.instance_id] = (stored, now + self._ttl)
            self._entries.move_to_end(instance.instance_id)

            while len(self._entries) > self._max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.info(
                    "instance_evicted",
                    extra={"instance_id": evicted_id, "max_entries": self._max_entries},
                )
            return deepcopy(stored)

    def delete(self, instance_id: str) -> bool:
        with self._lock:
            return self._entries.pop(instance_id, None) is not None

    def values(self) -> list[WorkflowInstance]:
        with self._lock:
            now = self._clock.now()
            return [
                deepcopy(inst) for inst_id in list(self._entries)
                if (inst := self._live(inst_id, now)) is not None
            ]

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock.now()
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
            if expired:
                logger.info("instances_purged", extra={"count": len(expired)})
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


class SqlInstanceStore:
    """
    Durable store backed by the ``workflow_instances`` table.

    Contract:
        ``put`` flushes within the caller's session; ``commit``/``rollback``
        are explicit.
    """

    def __init__(
        self,
        session: Session,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock | None = None,
    ):
        self.session = session
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()

    def _load(self, instance_id: str) -> WorkflowInstanceModel | None:
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.instance_id == instance_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, instance_id: str) -> WorkflowInstance | None:
        row = self._load(instance_id)
        if row is None or row.expires_at <= self._clock.now():
            return None
        return row.to_dto()

    def put(self, instance: WorkflowInstance) -> WorkflowInstance:
        now = self._clock.now()
        row = self._load(instance.instance_id)

        if instance.version == 0:
            if row is not None:
                raise _conflict(instance, row.version)
            row = WorkflowInstanceModel(instance_id=instance.instance_id, version=1)
            row.apply_dto(instance, expires_at=now + self._ttl)
            self.session.add(row)
        else:
            if row is None or row.version != instance.version:
                raise _conflict(instance, None if row is None else row.version)
            row.apply_dto(instance, expires_at=now + self._ttl)
            row.version = instance.version + 1

        try:
            self.session.flush()
        except StaleDataError as exc:
            raise _conflict(instance, None) from exc
        return row.to_dto()

    def delete(self, instance_id: str) -> bool:
        row = self._load(instance_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def values(self) -> list[WorkflowInstance]:
        stmt = (
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.expires_at > self._clock.now())
            .order_by(WorkflowInstanceModel.created_at)
        )
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def purge_expired(self) -> int:
        stmt = delete(WorkflowInstanceModel).where(
            WorkflowInstanceModel.expires_at <= self._clock.now()
        )
        result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        count = result.rowcount or 0
        if count:
            logger.info("instances_purged", extra={"count": count})
        return count

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
