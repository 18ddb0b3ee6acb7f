from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scholargraph.db.enums import NodeKind, ProcessingStatus
from scholargraph.db.models import Paper, utcnow
from scholargraph.db.session import Database
from scholargraph.db.upsert import LIKE_ESCAPE, escape_like, fill_if_empty, insert_for
from scholargraph.errors import PersistenceError, ValidationError
from scholargraph.graph.nodes import node_upsert_statement

logger = logging.getLogger(__name__)

# Fields refreshed in place when a paper is ingested again.
_REFRESHABLE = ("abstract", "full_text", "doi", "publication_date", "venue")


class PaperStore:
    """Paper records and their processing lifecycle."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        *,
        title: str,
        abstract: str | None = None,
        full_text: str | None = None,
        authors: list[str] | None = None,
        external_id: str | None = None,
        doi: str | None = None,
        publication_date: date | None = None,
        venue: str | None = None,
    ) -> Paper:
        """
        Create the paper and its paper node in one transaction.

        A paper whose external_id already exists is updated in place instead; no
        duplicate row is written and its processing status is left untouched.
        """
        if not title or not title.strip():
            raise ValidationError("Paper title must not be empty")
        fields = {
            "title": title.strip(),
            "abstract": abstract,
            "full_text": full_text,
            "authors": list(authors or []),
            "doi": doi,
            "publication_date": publication_date,
            "venue": venue,
        }

        try:
            return await self._create_or_refresh(fields, external_id)
        except IntegrityError as exc:
            if external_id is None:
                raise PersistenceError(f"Could not create paper {title!r}: {exc}") from exc
            # Another writer inserted the same external_id between our lookup and insert.
            logger.info("external_id %s created concurrently; refreshing instead", external_id)
            try:
                return await self._create_or_refresh(fields, external_id)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not create paper {title!r}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create paper {title!r}: {exc}") from exc

    async def _create_or_refresh(self, fields: dict[str, Any], external_id: str | None) -> Paper:
        async with self.db.session() as session:
            async with session.begin():
                if external_id is not None:
                    existing = (
                        await session.execute(select(Paper).where(Paper.external_id == external_id))
                    ).scalar_one_or_none()
                    if existing is not None:
                        self._refresh(existing, fields)
                        return existing

                paper_id = await self._upsert_paper_node(session, fields)
                await self._insert_paper(session, paper_id, fields, external_id)
            return await session.get(Paper, paper_id, populate_existing=True)

    @staticmethod
    def _refresh(paper: Paper, fields: dict[str, Any]) -> None:
        paper.title = fields["title"]
        for name in _REFRESHABLE:
            if fields[name] is not None:
                setattr(paper, name, fields[name])
        if fields["authors"]:
            paper.authors = fields["authors"]
        paper.updated_at = utcnow()

    async def _upsert_paper_node(self, session: AsyncSession, fields: dict[str, Any]) -> uuid.UUID:
        stmt = node_upsert_statement(
            self.db.dialect,
            kind=NodeKind.paper,
            name=fields["title"],
            metadata={name: fields[name] for name in ("abstract", "authors", "venue") if fields[name] is not None},
            source="system",
            confidence=1.0,
        )
        return (await session.execute(stmt)).scalar_one()

    async def _insert_paper(
        self,
        session: AsyncSession,
        paper_id: uuid.UUID,
        fields: dict[str, Any],
        external_id: str | None,
    ) -> None:
        # Same title means same paper node, hence the conflict on id.
        now = utcnow()
        table = Paper.__table__
        stmt = insert_for(self.db.dialect, table).values(
            id=paper_id,
            external_id=external_id,
            processing_status=ProcessingStatus.pending,
            created_at=now,
            updated_at=now,
            **fields,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                table.c.title: excluded.title,
                table.c.abstract: func.coalesce(excluded.abstract, table.c.abstract),
                table.c.full_text: func.coalesce(excluded.full_text, table.c.full_text),
                table.c.doi: func.coalesce(excluded.doi, table.c.doi),
                table.c.venue: func.coalesce(excluded.venue, table.c.venue),
                table.c.publication_date: func.coalesce(excluded.publication_date, table.c.publication_date),
                table.c.external_id: fill_if_empty(table.c.external_id, excluded.external_id),
                table.c.updated_at: excluded.updated_at,
            },
        )
        await session.execute(stmt)

    async def update_status(self, paper_id: uuid.UUID, status: ProcessingStatus | str) -> None:
        status = ProcessingStatus(status)
        now = utcnow()
        values: dict[str, Any] = {"processing_status": status, "updated_at": now}
        if status in (ProcessingStatus.completed, ProcessingStatus.failed):
            values["processed_at"] = now
        try:
            async with self.db.session() as session:
                async with session.begin():
                    result = await session.execute(update(Paper).where(Paper.id == paper_id).values(**values))
                    updated = result.rowcount
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update status of paper {paper_id}: {exc}") from exc
        if updated == 0:
            raise ValidationError(f"Paper {paper_id} does not exist")

    async def find_by_id(self, paper_id: uuid.UUID) -> Paper | None:
        async with self.db.session() as session:
            return await session.get(Paper, paper_id)

    async def find_by_external_id(self, external_id: str) -> Paper | None:
        async with self.db.session() as session:
            stmt = select(Paper).where(Paper.external_id == external_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def find_by_status(self, status: ProcessingStatus | str, limit: int = 100) -> list[Paper]:
        status = ProcessingStatus(status)
        async with self.db.session() as session:
            stmt = (
                select(Paper)
                .where(Paper.processing_status == status)
                .order_by(Paper.updated_at.desc(), Paper.id)
                .limit(limit)
            )
            return list((await session.execute(stmt)).scalars())

    async def recent_completed(self, limit: int = 50) -> list[Paper]:
        """Most recently published completed papers, used as cross-paper context."""
        async with self.db.session() as session:
            stmt = (
                select(Paper)
                .where(Paper.processing_status == ProcessingStatus.completed)
                .order_by(Paper.publication_date.desc().nulls_last(), Paper.created_at.desc(), Paper.id)
                .limit(limit)
            )
            return list((await session.execute(stmt)).scalars())

    async def search(self, query: str, limit: int = 20) -> list[Paper]:
        if not query or not query.strip():
            return []
        pattern = f"%{escape_like(query.strip())}%"
        async with self.db.session() as session:
            stmt = (
                select(Paper)
                .where(Paper.title.ilike(pattern, escape=LIKE_ESCAPE))
                .order_by(Paper.publication_date.desc().nulls_last(), Paper.title)
                .limit(limit)
            )
            return list((await session.execute(stmt)).scalars())

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ProcessingStatus}
        async with self.db.session() as session:
            stmt = select(Paper.processing_status, func.count()).group_by(Paper.processing_status)
            for status, count in (await session.execute(stmt)).all():
                counts[ProcessingStatus(status).value] = count
        return counts
