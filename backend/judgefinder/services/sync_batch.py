"""
Shared batch loop for the court / judge / decision sync managers.

Each manager implements ``sync_one``; the loop takes care of:
  - bounding the batch size
  - the fixed delay between items
  - cooperative cancellation (checked before every item)
  - per-item failure isolation (rollback, record, continue)
  - stopping on quota exhaustion (remaining items reported as rate_limited)
  - clearing cached search pages after a batch that changed anything
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.db.database import SessionLocal
from judgefinder.services.courtlistener_client import CourtListenerClient, courtlistener_client
from judgefinder.services.multi_tier_cache import SEARCH_TAG, search_cache
from judgefinder.utils.exceptions import RateLimited, ValidationError


@dataclass
class SyncOptions:
    delay_seconds: float = field(default_factory=lambda: settings.SYNC_ITEM_DELAY_SECONDS)
    phase_delay_seconds: float = 0.3
    cancel_event: Optional[asyncio.Event] = None
    skip_if_exists: bool = False
    lookback_years: int = field(default_factory=lambda: settings.LOOKBACK_YEARS)
    max_pages: Optional[int] = None
    invalidate_analytics: bool = True


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    rate_limited: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.rate_limited)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BatchSyncManager:
    entity = "entity"

    def __init__(
        self,
        client: Optional[CourtListenerClient] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        batch_max: Optional[int] = None,
    ) -> None:
        self.client = client or courtlistener_client
        self.session_factory = session_factory
        self.sleep = sleep
        self.batch_max = batch_max or settings.SYNC_BATCH_MAX

    async def sync_one(self, db: Session, entity_id: str, options: SyncOptions) -> None:
        raise NotImplementedError

    def record_failure(self, db: Session, entity_id: str, exc: Exception) -> None:
        """Persist the failure where the entity type keeps error state."""

    async def after_commit(self, entity_id: str, options: SyncOptions) -> None:
        """Hook run once an item's changes are committed."""

    def after_batch(self, db: Session, result: BatchResult) -> None:
        """Hook run before the batch session closes."""

    async def after_sync(self, result: BatchResult) -> None:
        """Drop cached search pages once any judge, court or case row changed."""
        if result.succeeded:
            await search_cache.invalidate_tag(SEARCH_TAG)

    async def sync_batch(self, entity_ids: Sequence[Any], options: Optional[SyncOptions] = None) -> BatchResult:
        options = options or SyncOptions()
        ids = [str(entity_id) for entity_id in entity_ids]
        if len(ids) > self.batch_max:
            raise ValidationError(
                f"{self.entity} batch of {len(ids)} exceeds maximum of {self.batch_max}",
                field="entity_ids",
            )

        result = BatchResult()
        db = self.session_factory()
        try:
            for index, entity_id in enumerate(ids):
                if options.cancel_event is not None and options.cancel_event.is_set():
                    result.cancelled = True
                    logger.info("%s sync cancelled before %s", self.entity, entity_id)
                    break

                try:
                    await self.sync_one(db, entity_id, options)
                    db.commit()
                    result.succeeded.append(entity_id)
                    await self.after_commit(entity_id, options)
                except RateLimited as exc:
                    db.rollback()
                    result.rate_limited.extend(ids[index:])
                    result.errors[entity_id] = str(exc)
                    logger.warning(
                        "%s sync stopped: quota exhausted, %d item(s) deferred (retry in %.0fs)",
                        self.entity, len(ids) - index, exc.retry_after,
                    )
                    break
                except Exception as exc:
                    db.rollback()
                    result.failed.append(entity_id)
                    result.errors[entity_id] = str(exc)
                    logger.warning("%s sync failed for %s: %s", self.entity, entity_id, exc)
                    try:
                        self.record_failure(db, entity_id, exc)
                        db.commit()
                    except SQLAlchemyError:
                        db.rollback()
                        logger.exception("Could not record sync failure for %s %s", self.entity, entity_id)

                if index < len(ids) - 1 and options.delay_seconds > 0:
                    await self.sleep(options.delay_seconds)

            self.after_batch(db, result)
            db.commit()
        finally:
            db.close()

        logger.info(
            "%s batch sync summary",
            self.entity,
            extra={
                "total": len(ids),
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "rate_limited": len(result.rate_limited),
                "cancelled": result.cancelled,
            },
        )
        await self.after_sync(result)
        return result
