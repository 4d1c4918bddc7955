"""
IdempotencyService -- response cache for retried requests.

Responsibility:
    Stores the response of a successful idempotent operation under its key
    and serves it back to retries of the same request until the record
    expires.  Cleanup sweeps expired records.

Architecture position:
    Kernel > Services -- imperative shell, called by TransitionEngine and by
    the procedure layer for ad-hoc keys.

Invariants enforced:
    - At most one record per key (unique constraint).
    - A record is served only while ``now < expires_at``; expired records
      count as misses and are overwritten by the next ``record``.
    - A key reused for a different request (request hash mismatch) is
      rejected with IdempotencyKeyCollisionError.  The cached response is
      never returned in that case.

Failure modes:
    - IdempotencyKeyCollisionError from ``check`` / ``record``.
    - IntegrityError on a concurrent first record is resolved by re-reading
      inside a savepoint.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.dtos import CleanupResult, IdempotencyCheck
from mission_kernel.exceptions import IdempotencyKeyCollisionError
from mission_kernel.logging_config import get_logger
from mission_kernel.models.idempotency import IdempotencyRecord
from mission_kernel.utils.idempotency import derive_idempotency_key

logger = get_logger("services.idempotency")

DEFAULT_TTL = timedelta(hours=24)


class IdempotencyService:
    """
    Keyed response cache with TTL.

    Contract:
        ``check`` before doing work, ``record`` after it succeeds, in the
        same transaction as the work itself.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT cache failures; a failed request is re-validated fresh.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ttl: timedelta = DEFAULT_TTL,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @staticmethod
    def derive_key(
        entity_id: UUID | str,
        operation_name: str,
        params: dict[str, Any] | None = None,
    ) -> str:
        return derive_idempotency_key(entity_id, operation_name, params)

    def _get(self, key: str) -> IdempotencyRecord | None:
        return self._session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == key)
        ).scalar_one_or_none()

    def check(
        self,
        key: str,
        *,
        mission_id: UUID | None = None,
        operation_name: str | None = None,
        request_hash: str | None = None,
    ) -> IdempotencyCheck:
        """
        Look up a cached response.

        Args:
            key: Idempotency key.
            mission_id: Only used for log context.
            operation_name: Only used for log context.
            request_hash: When given, must match the hash recorded with the
                key.

        Returns:
            IdempotencyCheck(cached=True, response) on a live hit, otherwise
            IdempotencyCheck(cached=False).

        Raises:
            IdempotencyKeyCollisionError: key recorded for another request.
        """
        record = self._get(key)
        if record is None or record.is_expired(self._clock.now()):
            logger.debug(
                "idempotency_miss",
                extra={
                    "idempotency_key": key,
                    "expired": record is not None,
                    "operation_name": operation_name,
                },
            )
            return IdempotencyCheck(cached=False)

        if request_hash is not None and record.request_hash != request_hash:
            logger.warning(
                "idempotency_key_collision",
                extra={
                    "idempotency_key": key,
                    "mission_id": str(mission_id) if mission_id else None,
                    "expected_hash": record.request_hash,
                    "received_hash": request_hash,
                },
            )
            raise IdempotencyKeyCollisionError(key, record.request_hash, request_hash)

        logger.info(
            "idempotency_hit",
            extra={
                "idempotency_key": key,
                "mission_id": str(record.mission_id) if record.mission_id else None,
                "operation_name": record.operation_name,
            },
        )
        return IdempotencyCheck(cached=True, response=record.response)

    def record(
        self,
        key: str,
        request_hash: str,
        response: dict[str, Any],
        *,
        mission_id: UUID | None = None,
        operation_name: str = "",
    ) -> IdempotencyRecord:
        """
        Store ``response`` under ``key`` for the configured TTL.

        An expired record under the same key is refreshed in place.  A live
        record for the same request is returned unchanged.

        Raises:
            IdempotencyKeyCollisionError: live record for another request.
        """
        now = self._clock.now()
        existing = self._get(key)
        if existing is not None:
            if not existing.is_expired(now):
                if existing.request_hash != request_hash:
                    logger.warning(
                        "idempotency_key_collision",
                        extra={
                            "idempotency_key": key,
                            "expected_hash": existing.request_hash,
                            "received_hash": request_hash,
                        },
                    )
                    raise IdempotencyKeyCollisionError(key, existing.request_hash, request_hash)
                return existing
            existing.request_hash = request_hash
            existing.response = response
            existing.mission_id = mission_id
            existing.operation_name = operation_name
            existing.created_at = now
            existing.expires_at = now + self._ttl
            self._session.flush()
            logger.debug("idempotency_record_refreshed", extra={"idempotency_key": key})
            return existing

        savepoint = self._session.begin_nested()
        try:
            record = IdempotencyRecord(
                key=key,
                mission_id=mission_id,
                operation_name=operation_name,
                request_hash=request_hash,
                response=response,
                created_at=now,
                expires_at=now + self._ttl,
            )
            self._session.add(record)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("idempotency_record_race", extra={"idempotency_key": key})
            record = self._get(key)
            if record is None:
                raise
            if record.request_hash != request_hash:
                raise IdempotencyKeyCollisionError(key, record.request_hash, request_hash)
            return record

        logger.debug(
            "idempotency_recorded",
            extra={
                "idempotency_key": key,
                "operation_name": operation_name,
                "expires_at": record.expires_at.isoformat(),
            },
        )
        return record

    def run_once(
        self,
        key: str,
        request_hash: str,
        fn: Callable[[], dict[str, Any]],
        *,
        mission_id: UUID | None = None,
        operation_name: str = "",
    ) -> tuple[dict[str, Any], bool]:
        """
        Run ``fn`` unless ``key`` already has a live response.

        Returns:
            ``(response, cached)``.  Exceptions from ``fn`` propagate and
            nothing is recorded.
        """
        hit = self.check(
            key,
            mission_id=mission_id,
            operation_name=operation_name,
            request_hash=request_hash,
        )
        if hit.cached:
            return hit.response or {}, True
        response = fn()
        self.record(
            key,
            request_hash,
            response,
            mission_id=mission_id,
            operation_name=operation_name,
        )
        return response, False

    def cleanup_expired(self) -> CleanupResult:
        """Delete every record whose ``expires_at`` has passed.  Re-runnable."""
        now = self._clock.now()
        result = self._session.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= now)
        )
        self._session.flush()
        deleted = int(result.rowcount or 0)
        logger.info(
            "idempotency_cleanup_completed",
            extra={"deleted_count": deleted, "cleaned_at": now.isoformat()},
        )
        return CleanupResult(deleted_count=deleted, cleaned_at=now)

    def cache_size(self) -> int:
        """Number of live (unexpired) records."""
        return int(
            self._session.execute(
                select(func.count(IdempotencyRecord.id)).where(
                    IdempotencyRecord.expires_at > self._clock.now()
                )
            ).scalar_one()
        )
