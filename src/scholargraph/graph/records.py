from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select

from scholargraph.db.enums import ExtractionStage
from scholargraph.db.models import ExtractionRecord, utcnow
from scholargraph.db.session import Database

logger = logging.getLogger(__name__)


class ExtractionRecordStore:
    """Append-only provenance of every stage attempt."""

    def __init__(self, db: Database):
        self.db = db

    async def append(
        self,
        *,
        paper_id: uuid.UUID,
        stage: ExtractionStage,
        producer: str,
        input: dict[str, Any] | None = None,
        output: dict[str, Any] | None = None,
        success: bool = True,
        error: str | None = None,
        duration_ms: int = 0,
    ) -> bool:
        """Write one record. Failures are logged and reported as False, never raised."""
        record = ExtractionRecord(
            id=uuid.uuid4(),
            paper_id=paper_id,
            stage=stage,
            producer=producer,
            input=input or {},
            output=output or {},
            success=success,
            error=error,
            duration_ms=duration_ms,
            timestamp=utcnow(),
        )
        try:
            async with self.db.session() as session:
                async with session.begin():
                    session.add(record)
        except Exception as exc:
            logger.warning("could not record %s stage for paper %s: %s", stage.value, paper_id, exc)
            return False
        return True

    async def list_for_paper(self, paper_id: uuid.UUID) -> list[ExtractionRecord]:
        async with self.db.session() as session:
            stmt = (
                select(ExtractionRecord)
                .where(ExtractionRecord.paper_id == paper_id)
                .order_by(ExtractionRecord.timestamp, ExtractionRecord.id)
            )
            return list((await session.execute(stmt)).scalars())
