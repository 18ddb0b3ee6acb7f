from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from scholargraph.db.enums import ProcessingStatus
from scholargraph.db.models import Paper
from scholargraph.db.session import Database
from scholargraph.errors import ValidationError
from scholargraph.graph.edges import EdgeStore
from scholargraph.graph.nodes import NodeStore
from scholargraph.graph.papers import PaperStore
from scholargraph.graph.records import ExtractionRecordStore
from scholargraph.llm.client import TextAnalysisClient
from scholargraph.pipeline.batch import BatchIngestionController, BatchSummary
from scholargraph.pipeline.orchestrator import ExtractionOrchestrator, PaperAnalysis, PipelineRun, PipelineState
from scholargraph.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class PaperInput(BaseModel):
    """A paper as handed over by whatever acquired it (fetcher, PDF parser, JSON file)."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(min_length=1)
    abstract: str | None = None
    full_text: str | None = None
    authors: list[str] = Field(default_factory=list)
    external_id: str | None = None
    doi: str | None = None
    publication_date: date | None = None
    venue: str | None = None

    @field_validator("abstract", "full_text", "external_id", "doi", "venue", mode="after")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None


@dataclass
class IngestResult:
    paper: Paper
    analysis: PaperAnalysis


@dataclass
class GraphStats:
    papers_by_status: dict[str, int] = field(default_factory=dict)
    nodes_by_kind: dict[str, int] = field(default_factory=dict)
    edges_by_kind: dict[str, int] = field(default_factory=dict)

    @property
    def total_papers(self) -> int:
        return sum(self.papers_by_status.values())

    @property
    def total_nodes(self) -> int:
        return sum(self.nodes_by_kind.values())

    @property
    def total_edges(self) -> int:
        return sum(self.edges_by_kind.values())


def _coerce_input(data: PaperInput | Mapping[str, Any]) -> PaperInput:
    if isinstance(data, PaperInput):
        return data
    try:
        return PaperInput.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first["loc"]) or "<input>"
        raise ValidationError(f"Invalid paper input at {where}: {first['msg']}") from exc


class IngestionPipeline:
    """Entry point for ingesting papers into the knowledge graph."""

    def __init__(self, db: Database, client: TextAnalysisClient, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.papers = PaperStore(db)
        self.nodes = NodeStore(db)
        self.edges = EdgeStore(db)
        self.records = ExtractionRecordStore(db)
        self.orchestrator = ExtractionOrchestrator(
            client=client,
            papers=self.papers,
            nodes=self.nodes,
            edges=self.edges,
            records=self.records,
            settings=self.settings,
        )
        self.controller = BatchIngestionController(self.ingest_paper, chunk_delay_s=self.settings.chunk_delay_s)

    async def ingest_paper(self, data: PaperInput | Mapping[str, Any]) -> IngestResult:
        """
        Create (or refresh) the paper record, then run extraction on it.

        The paper record is committed before extraction starts, so a failed extraction
        leaves a queryable paper in status `failed`. The error is re-raised.
        """
        paper_input = _coerce_input(data)
        paper = await self.papers.create(**paper_input.model_dump())
        logger.info("ingesting paper %s (%r)", paper.id, paper.title)
        analysis = await self.orchestrator.process(paper)
        refreshed = await self.papers.find_by_id(paper.id)
        return IngestResult(paper=refreshed or paper, analysis=analysis)

    async def ingest_batch(
        self,
        inputs: Iterable[PaperInput | Mapping[str, Any]],
        concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchSummary:
        return await self.controller.ingest_many(
            list(inputs),
            concurrency if concurrency is not None else self.settings.batch_concurrency,
            cancel_event=cancel_event,
        )

    async def reprocess_paper(self, paper_id: uuid.UUID) -> PaperAnalysis:
        paper = await self.papers.find_by_id(paper_id)
        if paper is None:
            raise ValidationError(f"Paper {paper_id} does not exist")
        logger.info("reprocessing paper %s (%r)", paper.id, paper.title)
        return await self.orchestrator.process(paper, self._resume_run(paper))

    @staticmethod
    def _resume_run(paper: Paper) -> PipelineRun:
        if paper.processing_status is ProcessingStatus.completed:
            state = PipelineState.persisted
        elif paper.processing_status is ProcessingStatus.failed:
            state = PipelineState.failed
        else:
            state = PipelineState.created
        return PipelineRun(paper.id, state=state, history=[state])

    async def get_stats(self) -> GraphStats:
        return GraphStats(
            papers_by_status=await self.papers.count_by_status(),
            nodes_by_kind=await self.nodes.count_by_kind(),
            edges_by_kind=await self.edges.count_by_kind(),
        )

    async def papers_by_status(self, status: ProcessingStatus | str, limit: int = 100) -> list[Paper]:
        return await self.papers.find_by_status(status, limit=limit)
