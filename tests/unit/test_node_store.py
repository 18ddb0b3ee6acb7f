import asyncio

import pytest

from scholargraph.contracts.models import ExtractedEntity
from scholargraph.db.enums import NodeKind
from scholargraph.errors import ValidationError
from scholargraph.graph.nodes import NodeStore


@pytest.fixture
def nodes(db):
    return NodeStore(db)


class TestUpsert:
    async def test_repeated_upsert_returns_same_id_and_merges(self, nodes):
        first = await nodes.upsert(NodeKind.concept, "Gaussian Splatting", metadata={"a": 1}, confidence=0.6)
        second = await nodes.upsert("concept", "  gaussian splatting!", metadata={"b": 2}, confidence=0.4)
        assert first == second

        node = await nodes.find_by_id(first)
        assert node.metadata_ == {"a": 1, "b": 2}
        assert node.confidence == 0.6
        assert node.canonical_name == "gaussian splatting"
        assert node.name == "Gaussian Splatting"

    async def test_incoming_metadata_keys_win(self, nodes):
        node_id = await nodes.upsert(NodeKind.method, "NeRF", metadata={"year": 2020, "venue": "ECCV"})
        await nodes.upsert(NodeKind.method, "NeRF", metadata={"year": 2021})
        node = await nodes.find_by_id(node_id)
        assert node.metadata_ == {"year": 2021, "venue": "ECCV"}

    async def test_nested_metadata_is_replaced_not_merged(self, nodes):
        node_id = await nodes.upsert(NodeKind.concept, "X", metadata={"a": {"old": 1}, "b": 1})
        await nodes.upsert(NodeKind.concept, "X", metadata={"a": {"new": 2}})
        node = await nodes.find_by_id(node_id)
        assert node.metadata_ == {"a": {"new": 2}, "b": 1}

    async def test_null_metadata_value_overwrites(self, nodes):
        node_id = await nodes.upsert(NodeKind.concept, "Y", metadata={"k": "v", "j": [1, 2], "flag": True})
        await nodes.upsert(NodeKind.concept, "Y", metadata={"k": None, "s": "text"})
        node = await nodes.find_by_id(node_id)
        assert node.metadata_ == {"k": None, "j": [1, 2], "flag": True, "s": "text"}

    async def test_concurrent_upserts_converge(self, nodes):
        confidences = [0.5 + i * 0.02 for i in range(20)]
        ids = await asyncio.gather(
            *(
                nodes.upsert(NodeKind.technique, "Technique X", metadata={f"k{i}": i}, confidence=c)
                for i, c in enumerate(confidences)
            )
        )
        assert len(set(ids)) == 1

        node = await nodes.find_by_id(ids[0])
        assert node.confidence == max(confidences)
        assert node.metadata_ == {f"k{i}": i for i in range(20)}
        assert await nodes.count_by_kind() == {NodeKind.technique.value: 1}

    async def test_confidence_never_decreases(self, nodes):
        node_id = await nodes.upsert(NodeKind.metric, "PSNR", confidence=0.3)
        await nodes.upsert(NodeKind.metric, "PSNR", confidence=0.9)
        await nodes.upsert(NodeKind.metric, "PSNR", confidence=0.1)
        assert (await nodes.find_by_id(node_id)).confidence == 0.9

    async def test_description_filled_only_when_empty(self, nodes):
        node_id = await nodes.upsert(NodeKind.dataset, "Mip-NeRF 360")
        await nodes.upsert(NodeKind.dataset, "Mip-NeRF 360", description="Unbounded scenes")
        await nodes.upsert(NodeKind.dataset, "Mip-NeRF 360", description="Something else")
        assert (await nodes.find_by_id(node_id)).description == "Unbounded scenes"

    async def test_same_name_different_kind_are_distinct(self, nodes):
        a = await nodes.upsert(NodeKind.concept, "Splatting")
        b = await nodes.upsert(NodeKind.technique, "Splatting")
        assert a != b

    async def test_confidence_is_clamped(self, nodes):
        node_id = await nodes.upsert(NodeKind.result, "Real-time rendering", confidence=3.0)
        assert (await nodes.find_by_id(node_id)).confidence == 1.0

    @pytest.mark.parametrize("name", ["", "   ", "?!"])
    async def test_empty_names_are_rejected(self, nodes, name):
        with pytest.raises(ValidationError):
            await nodes.upsert(NodeKind.concept, name)

    async def test_unknown_kind_is_rejected(self, nodes):
        with pytest.raises(ValidationError):
            await nodes.upsert("gadget", "Thing")


class TestBatchUpsert:
    async def test_returns_canonical_map_and_folds_description(self, nodes):
        entities = [
            ExtractedEntity(name="Method Y", type="method", description="A method", context="We propose Y"),
            ExtractedEntity(name="ScanNet", type="dataset", confidence=0.7, metadata={"section": "Results"}),
        ]
        id_map = await nodes.batch_upsert(entities, source="EntityExtractor")
        assert set(id_map) == {"method y", "scannet"}

        method = await nodes.find_by_id(id_map["method y"])
        assert method.description == "A method"
        assert method.metadata_ == {"description": "A method", "context": "We propose Y"}
        assert method.source == "EntityExtractor"

        dataset = await nodes.find_by_kind_and_name(NodeKind.dataset, "scannet")
        assert dataset.id == id_map["scannet"]
        assert dataset.metadata_ == {"section": "Results"}
        assert dataset.confidence == 0.7

    async def test_batch_converges_with_existing_nodes(self, nodes):
        existing = await nodes.upsert(NodeKind.method, "Method Y", confidence=0.95)
        id_map = await nodes.batch_upsert(
            [ExtractedEntity(name="method  y", type="method", confidence=0.5)], source="EntityExtractor"
        )
        assert id_map["method y"] == existing
        assert (await nodes.find_by_id(existing)).confidence == 0.95

    async def test_empty_batch(self, nodes):
        assert await nodes.batch_upsert([], source="EntityExtractor") == {}


class TestQueries:
    async def test_fuzzy_search_ranks_closest_first(self, nodes):
        await nodes.upsert(NodeKind.technique, "Technique X")
        await nodes.upsert(NodeKind.technique, "Technique X Plus Plus")
        await nodes.upsert(NodeKind.concept, "Unrelated")

        matches = await nodes.fuzzy_search("technique x")
        assert [m.name for m in matches] == ["Technique X", "Technique X Plus Plus"]
        assert matches[0].score == 1.0
        assert matches[0].score > matches[1].score

    async def test_fuzzy_search_is_deterministic(self, nodes):
        for name in ["Alpha Net", "Alpha Net v2", "Alpha Network", "Beta Alpha Net"]:
            await nodes.upsert(NodeKind.method, name)
        first = await nodes.fuzzy_search("alpha net", limit=3)
        second = await nodes.fuzzy_search("alpha net", limit=3)
        assert first == second
        assert len(first) == 3

    async def test_fuzzy_search_filters_kind_and_min_score(self, nodes):
        await nodes.upsert(NodeKind.concept, "Splat")
        await nodes.upsert(NodeKind.method, "Splat Renderer Extended Edition")
        concept_only = await nodes.fuzzy_search("splat", kind=NodeKind.concept)
        assert [m.kind for m in concept_only] == [NodeKind.concept]
        strict = await nodes.fuzzy_search("splat", min_score=0.9)
        assert [m.name for m in strict] == ["Splat"]

    async def test_fuzzy_search_escapes_like_wildcards(self, nodes):
        await nodes.upsert(NodeKind.metric, "Accuracy")
        assert await nodes.fuzzy_search("%") == []
        # An unescaped underscore would match any single character.
        assert await nodes.fuzzy_search("Acc_racy") == []
        assert [m.name for m in await nodes.fuzzy_search("accura")] == ["Accuracy"]

    async def test_find_by_kind_and_count(self, nodes):
        await nodes.upsert(NodeKind.metric, "PSNR")
        await nodes.upsert(NodeKind.metric, "SSIM")
        await nodes.upsert(NodeKind.dataset, "LLFF")
        assert {n.name for n in await nodes.find_by_kind(NodeKind.metric)} == {"PSNR", "SSIM"}
        assert await nodes.count_by_kind() == {"metric": 2, "dataset": 1}
