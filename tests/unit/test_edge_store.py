import asyncio
import uuid

import pytest

from scholargraph.contracts.models import ExtractedRelationship
from scholargraph.db.enums import EdgeDirection, EdgeKind, NodeKind
from scholargraph.errors import ResolutionFailure, ValidationError
from scholargraph.graph.edges import EdgeStore
from scholargraph.graph.nodes import NodeStore


@pytest.fixture
def nodes(db):
    return NodeStore(db)


@pytest.fixture
def edges(db):
    return EdgeStore(db)


@pytest.fixture
async def pair(nodes):
    a = await nodes.upsert(NodeKind.method, "Method A")
    b = await nodes.upsert(NodeKind.method, "Method B")
    return a, b


async def test_create_is_idempotent_and_keeps_evidence(edges, pair):
    a, b = pair
    first = await edges.create(EdgeKind.outperforms, a, b, evidence="A beats B by 2 dB", confidence=0.6)
    second = await edges.create(EdgeKind.outperforms, a, b, evidence=None, confidence=0.4, metadata={"k": 1})
    third = await edges.create(EdgeKind.outperforms, a, b, evidence="different quote", confidence=0.8)
    assert first == second == third

    [edge] = await edges.find_by_endpoint(a, EdgeDirection.outgoing)
    assert edge.evidence == "A beats B by 2 dB"
    assert edge.confidence == 0.8
    assert edge.metadata_ == {"k": 1}


async def test_metadata_union_is_shallow(edges, pair):
    a, b = pair
    edge_id = await edges.create(EdgeKind.related_to, a, b, metadata={"a": {"old": 1}, "b": 1, "c": "x"})
    await edges.create(EdgeKind.related_to, a, b, metadata={"a": {"new": 2}, "c": None})
    [edge] = await edges.find_by_endpoint(a, EdgeDirection.outgoing)
    assert edge.id == edge_id
    assert edge.metadata_ == {"a": {"new": 2}, "b": 1, "c": None}


async def test_concurrent_creates_converge(edges, pair):
    a, b = pair
    confidences = [0.3 + i * 0.03 for i in range(15)]
    ids = await asyncio.gather(
        *(
            edges.create(EdgeKind.outperforms, a, b, confidence=c, metadata={f"run{i}": i})
            for i, c in enumerate(confidences)
        )
    )
    assert len(set(ids)) == 1

    [edge] = await edges.find_by_endpoint(a, EdgeDirection.outgoing)
    assert edge.confidence == max(confidences)
    assert edge.metadata_ == {f"run{i}": i for i in range(15)}


async def test_description_filled_when_empty(edges, pair):
    a, b = pair
    edge_id = await edges.create(EdgeKind.extends, a, b)
    await edges.create(EdgeKind.extends, a, b, description="B generalises A")
    [edge] = await edges.find_by_endpoint(b, EdgeDirection.incoming)
    assert edge.id == edge_id
    assert edge.description == "B generalises A"


async def test_direction_and_kind_are_part_of_identity(edges, pair):
    a, b = pair
    forward = await edges.create(EdgeKind.related_to, a, b)
    backward = await edges.create(EdgeKind.related_to, b, a)
    other_kind = await edges.create(EdgeKind.combines_with, a, b)
    assert len({forward, backward, other_kind}) == 3

    assert len(await edges.find_by_endpoint(a, EdgeDirection.outgoing)) == 2
    assert len(await edges.find_by_endpoint(a, EdgeDirection.incoming)) == 1
    assert len(await edges.find_by_endpoint(a, EdgeDirection.both)) == 3
    assert len(await edges.find_by_endpoint(a, "both", kind=EdgeKind.related_to)) == 2
    assert await edges.count_by_kind() == {"related_to": 2, "combines_with": 1}


async def test_self_loop_allowed(edges, pair):
    a, _ = pair
    await edges.create(EdgeKind.related_to, a, a)
    [edge] = await edges.find_by_endpoint(a, EdgeDirection.both)
    assert edge.source_id == edge.target_id == a


async def test_unknown_kind_rejected(edges, pair):
    a, b = pair
    with pytest.raises(ValidationError):
        await edges.create("friends_with", a, b)


async def test_batch_counts_unresolved_and_failed(edges, pair):
    a, b = pair
    ids = {"method a": a, "method b": b, "ghost": uuid.uuid4()}

    async def resolve(name: str) -> uuid.UUID:
        key = name.lower()
        if key not in ids:
            raise ResolutionFailure(name)
        return ids[key]

    relationships = [
        ExtractedRelationship(source="Method A", target="Method B", type="outperforms", evidence="table 2"),
        ExtractedRelationship(source="Method A", target="Nowhere", type="extends"),
        # Resolves to an id with no node behind it: the store rejects it.
        ExtractedRelationship(source="Ghost", target="Method B", type="replaces"),
        ExtractedRelationship(source="Method B", target="Method A", type="compares_with"),
    ]
    result = await edges.batch_create_from_extraction(relationships, resolve, source="RelationshipExtractor")
    assert (result.created, result.unresolved, result.failed) == (2, 1, 1)
    assert result.unresolved_names == ["Nowhere"]
    assert len(result.edge_ids) == 2
