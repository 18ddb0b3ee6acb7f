from scholargraph.graph.edges import EdgeBatchResult, EdgeStore
from scholargraph.graph.nodes import NodeMatch, NodeStore
from scholargraph.graph.papers import PaperStore
from scholargraph.graph.records import ExtractionRecordStore

__all__ = [
    "EdgeBatchResult",
    "EdgeStore",
    "ExtractionRecordStore",
    "NodeMatch",
    "NodeStore",
    "PaperStore",
]
