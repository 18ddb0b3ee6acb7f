import pytest

from scholargraph.db.enums import NodeKind
from scholargraph.errors import ResolutionFailure
from scholargraph.graph.nodes import NodeStore
from scholargraph.normalize import normalize_name
from scholargraph.pipeline.resolver import EntityResolver, ResolutionTier


@pytest.fixture
def nodes(db):
    return NodeStore(db)


@pytest.fixture
async def paper_id(nodes):
    return await nodes.upsert(NodeKind.paper, "A Study of Splats")


async def test_local_tier_wins_over_global(nodes, paper_id):
    global_id = await nodes.upsert(NodeKind.concept, "Technique X")
    local_id = await nodes.upsert(NodeKind.technique, "Technique X")
    resolver = EntityResolver(
        nodes,
        local_ids={"technique x": local_id},
        paper_id=paper_id,
        paper_names=["A Study of Splats"],
    )
    resolution = await resolver.resolve("technique  X!")
    assert resolution.node_id == local_id
    assert resolution.tier is ResolutionTier.local
    assert global_id != local_id


async def test_self_reference_tier(nodes, paper_id):
    resolver = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=["A Study of Splats"])
    resolution = await resolver.resolve("a study of splats.")
    assert resolution.node_id == paper_id
    assert resolution.tier is ResolutionTier.self_reference


async def test_global_tier_uses_fuzzy_search(nodes, paper_id):
    other = await nodes.upsert(NodeKind.technique, "Technique X")
    resolver = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=["A Study of Splats"])
    resolution = await resolver.resolve("Technique X")
    assert resolution.node_id == other
    assert resolution.tier is ResolutionTier.global_fuzzy
    assert await resolver.require("technique x") == other


async def test_unresolvable_name(nodes, paper_id):
    resolver = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=["A Study of Splats"])
    assert await resolver.resolve("Nothing Like It") is None
    assert await resolver.resolve("   ") is None
    with pytest.raises(ResolutionFailure) as exc_info:
        await resolver.require("Nothing Like It")
    assert exc_info.value.name == "Nothing Like It"


async def test_min_score_limits_global_matches(nodes, paper_id):
    await nodes.upsert(NodeKind.method, "Splat Renderer With Many Extra Words")
    lenient = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=[])
    strict = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=[], min_score=0.8)
    assert (await lenient.resolve("Splat Renderer")).tier is ResolutionTier.global_fuzzy
    assert await strict.resolve("Splat Renderer") is None


async def test_resolution_is_deterministic(nodes, paper_id):
    for name in ["Alpha", "Alpha Beta", "Alpha Gamma"]:
        await nodes.upsert(NodeKind.concept, name)
    resolver = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=[])
    fresh = EntityResolver(nodes, local_ids={}, paper_id=paper_id, paper_names=[])
    first = await resolver.resolve("alpha")
    assert first == await fresh.resolve("alpha")
    assert normalize_name((await nodes.find_by_id(first.node_id)).name) == "alpha"
