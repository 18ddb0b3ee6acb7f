from scholargraph.pipeline.batch import BatchFailure, BatchIngestionController, BatchSummary
from scholargraph.pipeline.ingestion import GraphStats, IngestionPipeline, IngestResult, PaperInput
from scholargraph.pipeline.orchestrator import ExtractionOrchestrator, PaperAnalysis, PipelineRun, PipelineState
from scholargraph.pipeline.resolver import EntityResolver, Resolution, ResolutionTier

__all__ = [
    "BatchFailure",
    "BatchIngestionController",
    "BatchSummary",
    "EntityResolver",
    "ExtractionOrchestrator",
    "GraphStats",
    "IngestResult",
    "IngestionPipeline",
    "PaperAnalysis",
    "PaperInput",
    "PipelineRun",
    "PipelineState",
    "Resolution",
    "ResolutionTier",
]
