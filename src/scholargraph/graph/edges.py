from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from scholargraph.db.enums import EdgeDirection, EdgeKind
from scholargraph.db.models import Edge, utcnow
from scholargraph.db.session import Database
from scholargraph.db.upsert import clean_metadata, fill_if_empty, greatest, insert_for, merge_json
from scholargraph.errors import PersistenceError, ResolutionFailure, ScholarGraphError, ValidationError
from scholargraph.normalize import clamp_confidence

logger = logging.getLogger(__name__)

Resolve = Callable[[str], Awaitable[uuid.UUID]]


@dataclass
class EdgeBatchResult:
    created: int = 0
    unresolved: int = 0
    failed: int = 0
    edge_ids: list[uuid.UUID] = field(default_factory=list)
    unresolved_names: list[str] = field(default_factory=list)


def coerce_edge_kind(kind: EdgeKind | str) -> EdgeKind:
    try:
        return EdgeKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown edge kind {kind!r}") from exc


class EdgeStore:
    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        kind: EdgeKind | str,
        source_id: uuid.UUID,
        target_id: uuid.UUID,
        description: str | None = None,
        evidence: str | None = None,
        confidence: float = 1.0,
        metadata: dict[str, Any] | None = None,
        source: str = "system",
    ) -> uuid.UUID:
        """
        Upsert the edge keyed on (kind, source_id, target_id).

        Direction is part of identity: A->B and B->A are separate edges. On conflict
        the stored description and evidence are only filled when empty, confidence
        never decreases and metadata keys are merged.
        """
        kind = coerce_edge_kind(kind)
        if source_id is None or target_id is None:
            raise ValidationError("Edge endpoints must both be set")

        dialect = self.db.dialect
        metadata = clean_metadata(metadata)
        table = Edge.__table__
        stmt = insert_for(dialect, table).values(
            id=uuid.uuid4(),
            kind=kind,
            source_id=source_id,
            target_id=target_id,
            description=description or None,
            evidence=evidence or None,
            confidence=clamp_confidence(confidence, default=1.0),
            metadata=metadata,
            source=source,
            created_at=utcnow(),
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.kind, table.c.source_id, table.c.target_id],
            set_={
                table.c.description: fill_if_empty(table.c.description, excluded.description),
                table.c.evidence: fill_if_empty(table.c.evidence, excluded.evidence),
                table.c.confidence: greatest(dialect, table.c.confidence, excluded.confidence),
                table.c["metadata"]: merge_json(dialect, table.c["metadata"], excluded["metadata"], metadata),
            },
        ).returning(table.c.id)

        try:
            async with self.db.session() as session:
                async with session.begin():
                    return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Edge upsert failed ({kind.value} {source_id} -> {target_id}): {exc}") from exc

    async def batch_create_from_extraction(
        self,
        relationships: Iterable[Any],
        resolve: Resolve,
        source: str,
    ) -> EdgeBatchResult:
        """
        Create edges for extracted relationships, resolving endpoint names via `resolve`.

        A relationship whose endpoint cannot be resolved is counted as unresolved and
        skipped; any other failure is counted as failed. The batch itself never aborts.
        """
        result = EdgeBatchResult()
        for rel in relationships:
            try:
                source_id = await resolve(rel.source)
                target_id = await resolve(rel.target)
            except ResolutionFailure as exc:
                result.unresolved += 1
                result.unresolved_names.append(exc.name)
                logger.info("skipping %s relationship: %s", rel.kind, exc.message)
                continue

            try:
                edge_id = await self.create(
                    rel.kind,
                    source_id,
                    target_id,
                    description=rel.description,
                    evidence=rel.evidence,
                    confidence=rel.confidence,
                    metadata=rel.metadata,
                    source=source,
                )
            except ScholarGraphError as exc:
                result.failed += 1
                logger.warning("edge %s %r -> %r failed: %s", rel.kind, rel.source, rel.target, exc.message)
                continue
            result.created += 1
            result.edge_ids.append(edge_id)
        return result

    async def find_by_endpoint(
        self,
        node_id: uuid.UUID,
        direction: EdgeDirection | str = EdgeDirection.both,
        kind: EdgeKind | str | None = None,
    ) -> list[Edge]:
        direction = EdgeDirection(direction)
        if direction is EdgeDirection.outgoing:
            condition = Edge.source_id == node_id
        elif direction is EdgeDirection.incoming:
            condition = Edge.target_id == node_id
        else:
            condition = or_(Edge.source_id == node_id, Edge.target_id == node_id)

        stmt = select(Edge).where(condition)
        if kind is not None:
            stmt = stmt.where(Edge.kind == coerce_edge_kind(kind))
        stmt = stmt.order_by(Edge.confidence.desc(), Edge.created_at, Edge.id)
        async with self.db.session() as session:
            return list((await session.execute(stmt)).scalars())

    async def count_by_kind(self) -> dict[str, int]:
        async with self.db.session() as session:
            stmt = select(Edge.kind, func.count()).group_by(Edge.kind)
            return {EdgeKind(kind).value: count for kind, count in (await session.execute(stmt)).all()}
