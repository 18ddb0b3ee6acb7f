from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from difflib import SequenceMatcher
from typing import Any, Iterable, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from scholargraph.db.enums import NodeKind
from scholargraph.db.models import Node, utcnow
from scholargraph.db.session import Database
from scholargraph.db.upsert import (
    LIKE_ESCAPE,
    clean_metadata,
    escape_like,
    fill_if_empty,
    greatest,
    insert_for,
    merge_json,
)
from scholargraph.errors import PersistenceError, ValidationError
from scholargraph.normalize import clamp_confidence, normalize_name

logger = logging.getLogger(__name__)


class EntityLike(Protocol):
    name: str
    kind: NodeKind
    description: str | None
    confidence: float
    context: str | None
    metadata: dict[str, Any]


@dataclass(frozen=True)
class NodeMatch:
    id: uuid.UUID
    kind: NodeKind
    name: str
    canonical_name: str
    score: float


def coerce_node_kind(kind: NodeKind | str) -> NodeKind:
    try:
        return NodeKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown node kind {kind!r}") from exc


def node_upsert_statement(
    dialect: str,
    *,
    kind: NodeKind | str,
    name: str,
    metadata: dict[str, Any] | None = None,
    source: str = "system",
    confidence: float = 1.0,
    description: str | None = None,
    now: datetime | None = None,
):
    """
    Build the single-statement node upsert keyed on (kind, canonical_name).

    On conflict: metadata is a shallow union (incoming keys win), confidence never
    decreases, description is only filled when the stored one is empty.
    The statement returns the node id for both the insert and the update path.
    """
    kind = coerce_node_kind(kind)
    if name is None or not name.strip():
        raise ValidationError("Node name must not be empty")
    canonical = normalize_name(name)
    if not canonical:
        raise ValidationError(f"Node name {name!r} has no canonical form")

    now = now or utcnow()
    metadata = clean_metadata(metadata)
    table = Node.__table__
    stmt = insert_for(dialect, table).values(
        id=uuid.uuid4(),
        kind=kind,
        name=name.strip(),
        canonical_name=canonical,
        description=description or None,
        metadata=metadata,
        confidence=clamp_confidence(confidence, default=1.0),
        source=source,
        created_at=now,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.kind, table.c.canonical_name],
        set_={
            table.c["metadata"]: merge_json(dialect, table.c["metadata"], excluded["metadata"], metadata),
            table.c.confidence: greatest(dialect, table.c.confidence, excluded.confidence),
            table.c.description: fill_if_empty(table.c.description, excluded.description),
            table.c.updated_at: excluded.updated_at,
        },
    )
    return stmt.returning(table.c.id)


class NodeStore:
    def __init__(self, db: Database):
        self.db = db

    async def upsert(
        self,
        kind: NodeKind | str,
        name: str,
        metadata: dict[str, Any] | None = None,
        source: str = "system",
        confidence: float = 1.0,
        description: str | None = None,
    ) -> uuid.UUID:
        stmt = node_upsert_statement(
            self.db.dialect,
            kind=kind,
            name=name,
            metadata=metadata,
            source=source,
            confidence=confidence,
            description=description,
        )
        try:
            async with self.db.session() as session:
                async with session.begin():
                    return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Node upsert failed for {name!r}: {exc}") from exc

    async def batch_upsert(self, entities: Iterable[EntityLike], source: str) -> dict[str, uuid.UUID]:
        """
        Upsert all entities of one paper in a single transaction.

        Statements are issued in (kind, canonical_name) order so concurrent batches
        touching the same rows take row locks in the same order.
        Returns canonical_name -> node id; the first entity in that order wins a
        canonical name shared across kinds.
        """
        prepared = []
        for entity in entities:
            canonical = normalize_name(entity.name)
            if not canonical:
                raise ValidationError(f"Entity name {entity.name!r} has no canonical form")
            prepared.append((coerce_node_kind(entity.kind).value, canonical, entity))
        prepared.sort(key=lambda item: (item[0], item[1]))

        id_map: dict[str, uuid.UUID] = {}
        if not prepared:
            return id_map

        now = utcnow()
        dialect = self.db.dialect
        try:
            async with self.db.session() as session:
                async with session.begin():
                    for kind, canonical, entity in prepared:
                        extracted = {"description": entity.description, "context": entity.context}
                        metadata = {k: v for k, v in extracted.items() if v is not None}
                        metadata.update(entity.metadata or {})
                        stmt = node_upsert_statement(
                            dialect,
                            kind=kind,
                            name=entity.name,
                            metadata=metadata,
                            source=source,
                            confidence=entity.confidence,
                            description=entity.description,
                            now=now,
                        )
                        node_id = (await session.execute(stmt)).scalar_one()
                        id_map.setdefault(canonical, node_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Batch node upsert failed: {exc}") from exc

        logger.debug("upserted %d nodes from %s", len(prepared), source)
        return id_map

    async def find_by_kind_and_name(self, kind: NodeKind | str, name: str) -> Node | None:
        kind = coerce_node_kind(kind)
        canonical = normalize_name(name)
        async with self.db.session() as session:
            stmt = select(Node).where(Node.kind == kind, Node.canonical_name == canonical)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def find_by_id(self, node_id: uuid.UUID) -> Node | None:
        async with self.db.session() as session:
            return await session.get(Node, node_id)

    async def find_by_kind(self, kind: NodeKind | str, limit: int = 100) -> list[Node]:
        kind = coerce_node_kind(kind)
        async with self.db.session() as session:
            stmt = (
                select(Node)
                .where(Node.kind == kind)
                .order_by(Node.confidence.desc(), Node.canonical_name)
                .limit(limit)
            )
            return list((await session.execute(stmt)).scalars())

    async def fuzzy_search(
        self,
        query: str,
        kind: NodeKind | str | None = None,
        limit: int = 20,
        min_score: float = 0.0,
    ) -> list[NodeMatch]:
        """
        Nodes whose name contains `query` (case-insensitive) or whose canonical name
        contains its canonical form, best match first.

        Ranking is the SequenceMatcher ratio between canonical names; ties are broken
        by canonical name then id so results are stable for a fixed store state.
        """
        canonical = normalize_name(query or "")
        if not canonical or limit < 1:
            return []

        name_pattern = f"%{escape_like(query.strip())}%"
        canonical_pattern = f"%{escape_like(canonical)}%"
        stmt = select(Node.id, Node.kind, Node.name, Node.canonical_name).where(
            or_(
                Node.name.ilike(name_pattern, escape=LIKE_ESCAPE),
                Node.canonical_name.like(canonical_pattern, escape=LIKE_ESCAPE),
            )
        )
        if kind is not None:
            stmt = stmt.where(Node.kind == coerce_node_kind(kind))
        stmt = stmt.order_by(func.length(Node.canonical_name), Node.canonical_name, Node.id).limit(
            max(limit * 10, 50)
        )

        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        matches = []
        for row in rows:
            score = SequenceMatcher(None, canonical, row.canonical_name).ratio()
            if score < min_score:
                continue
            matches.append(
                NodeMatch(
                    id=row.id,
                    kind=NodeKind(row.kind),
                    name=row.name,
                    canonical_name=row.canonical_name,
                    score=score,
                )
            )
        matches.sort(key=lambda m: (-m.score, m.canonical_name, str(m.id)))
        return matches[:limit]

    async def count_by_kind(self) -> dict[str, int]:
        async with self.db.session() as session:
            stmt = select(Node.kind, func.count()).group_by(Node.kind)
            return {NodeKind(kind).value: count for kind, count in (await session.execute(stmt)).all()}
