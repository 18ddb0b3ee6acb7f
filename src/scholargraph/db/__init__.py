from scholargraph.db.base import Base
from scholargraph.db.enums import EdgeDirection, EdgeKind, ExtractionStage, NodeKind, ProcessingStatus
from scholargraph.db.models import Edge, ExtractionRecord, Node, Paper
from scholargraph.db.session import Database

__all__ = [
    "Base",
    "Database",
    "Edge",
    "EdgeDirection",
    "EdgeKind",
    "ExtractionRecord",
    "ExtractionStage",
    "Node",
    "NodeKind",
    "Paper",
    "ProcessingStatus",
]
