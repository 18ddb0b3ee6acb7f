"""
Per-paper extraction pipeline.

    created -> entity_extracting -> relationship_extracting -> validating -> persisted
                      |                       |                     |
                      +-----------------------+---------------------+--> failed

Nothing is written to the graph before validation completes. Every stage attempt is
recorded as an ExtractionRecord; a failing stage marks the paper failed and the error
propagates to the caller.
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from scholargraph.contracts.models import (
    ExtractedEntity,
    ExtractedRelationship,
    parse_entities,
    parse_relationships,
)
from scholargraph.db.enums import ExtractionStage, ProcessingStatus
from scholargraph.db.models import Paper
from scholargraph.errors import ParseError, ScholarGraphError
from scholargraph.graph.edges import EdgeBatchResult, EdgeStore
from scholargraph.graph.nodes import NodeStore
from scholargraph.graph.papers import PaperStore
from scholargraph.graph.records import ExtractionRecordStore
from scholargraph.llm.client import AnalysisRequest, TextAnalysisClient
from scholargraph.pipeline import prompts
from scholargraph.pipeline.resolver import EntityResolver
from scholargraph.pipeline.validation import ValidatedExtraction, validate_extraction
from scholargraph.settings import Settings

logger = logging.getLogger(__name__)

ENTITY_PRODUCER = "EntityExtractor"
RELATIONSHIP_PRODUCER = "RelationshipExtractor"
VALIDATION_PRODUCER = "Validator"
PIPELINE_PRODUCER = "Orchestrator"

_RAW_EXCERPT_CHARS = 2000


class PipelineState(str, enum.Enum):
    created = "created"
    entity_extracting = "entity_extracting"
    relationship_extracting = "relationship_extracting"
    validating = "validating"
    persisted = "persisted"
    failed = "failed"


_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.created: frozenset({PipelineState.entity_extracting, PipelineState.failed}),
    PipelineState.entity_extracting: frozenset({PipelineState.relationship_extracting, PipelineState.failed}),
    PipelineState.relationship_extracting: frozenset({PipelineState.validating, PipelineState.failed}),
    PipelineState.validating: frozenset({PipelineState.persisted, PipelineState.failed}),
    # Reprocessing re-enters the pipeline from either terminal state.
    PipelineState.persisted: frozenset({PipelineState.entity_extracting}),
    PipelineState.failed: frozenset({PipelineState.entity_extracting}),
}


class IllegalTransition(ScholarGraphError):
    def __init__(self, current: PipelineState, target: PipelineState):
        super().__init__(f"Illegal pipeline transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass
class PipelineRun:
    paper_id: uuid.UUID
    state: PipelineState = PipelineState.created
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.created])

    def advance(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise IllegalTransition(self.state, target)
        self.state = target
        self.history.append(target)


@dataclass
class PaperAnalysis:
    paper_id: uuid.UUID
    state: PipelineState
    history: list[PipelineState]
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)
    node_ids: dict[str, uuid.UUID] = field(default_factory=dict)
    edges: EdgeBatchResult = field(default_factory=EdgeBatchResult)
    dropped_entities: int = 0
    dropped_relationships: int = 0
    duration_ms: int = 0


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _error_output(exc: BaseException) -> dict[str, Any]:
    output: dict[str, Any] = {"error_type": type(exc).__name__}
    if isinstance(exc, ParseError) and exc.raw:
        output["raw_excerpt"] = exc.raw[:_RAW_EXCERPT_CHARS]
    return output


def _error_message(exc: BaseException) -> str:
    return exc.message if isinstance(exc, ScholarGraphError) else str(exc)


class ExtractionOrchestrator:
    def __init__(
        self,
        *,
        client: TextAnalysisClient,
        papers: PaperStore,
        nodes: NodeStore,
        edges: EdgeStore,
        records: ExtractionRecordStore,
        settings: Settings,
    ):
        self.client = client
        self.papers = papers
        self.nodes = nodes
        self.edges = edges
        self.records = records
        self.settings = settings

    async def process(self, paper: Paper, run: PipelineRun | None = None) -> PaperAnalysis:
        """
        Run all stages for one paper and persist the validated result.

        `run` carries the state of a previous attempt when reprocessing; a fresh run
        starts in `created`.
        """
        run = run or PipelineRun(paper.id)
        started = time.monotonic()
        body = prompts.truncate_body(paper.full_text, self.settings.max_body_chars)
        # The relationship prompt carries no abstract section of its own.
        relationship_body = body or prompts.truncate_body(paper.abstract, self.settings.max_body_chars)
        logger.info("processing paper %s (%r)", paper.id, paper.title)

        try:
            run.advance(PipelineState.entity_extracting)
            await self.papers.update_status(paper.id, ProcessingStatus.processing)
            paper_names = await self._paper_names(paper)
            entities = await self._extract_entities(paper, body)

            run.advance(PipelineState.relationship_extracting)
            relationships = await self._extract_relationships(paper, entities, relationship_body)

            run.advance(PipelineState.validating)
            validated = await self._validate(paper, entities, relationships, paper_names)
            node_ids, edge_result = await self._persist(paper, validated, paper_names)
            await self.papers.update_status(paper.id, ProcessingStatus.completed)
            run.advance(PipelineState.persisted)
        except Exception as exc:
            await self._fail(paper, run, exc, started)
            raise

        analysis = PaperAnalysis(
            paper_id=paper.id,
            state=run.state,
            history=list(run.history),
            entities=validated.entities,
            relationships=validated.relationships,
            node_ids=node_ids,
            edges=edge_result,
            dropped_entities=validated.dropped_entities,
            dropped_relationships=validated.dropped_relationships,
            duration_ms=_elapsed_ms(started),
        )
        await self.records.append(
            paper_id=paper.id,
            stage=ExtractionStage.pipeline,
            producer=PIPELINE_PRODUCER,
            input={"title": paper.title},
            output={
                "history": [s.value for s in run.history],
                "entities": len(validated.entities),
                "relationships": len(validated.relationships),
                "nodes": len(node_ids),
                "edges_created": edge_result.created,
                "edges_unresolved": edge_result.unresolved,
                "edges_failed": edge_result.failed,
            },
            success=True,
            duration_ms=analysis.duration_ms,
        )
        logger.info(
            "paper %s persisted: %d nodes, %d edges (%d unresolved, %d failed) in %.2fs",
            paper.id,
            len(node_ids),
            edge_result.created,
            edge_result.unresolved,
            edge_result.failed,
            analysis.duration_ms / 1000,
        )
        return analysis

    async def _extract_entities(self, paper: Paper, body: str) -> list[ExtractedEntity]:
        started = time.monotonic()
        request = AnalysisRequest(
            instructions=prompts.ENTITY_INSTRUCTIONS,
            content=prompts.render_entity_prompt(title=paper.title, abstract=paper.abstract, body=body),
            temperature=self.settings.entity_temperature,
            max_output_tokens=self.settings.max_output_tokens,
            structured_output_required=True,
        )
        stage_input = {"title": paper.title, "content_chars": len(request.content)}
        try:
            response = await self.client.analyze(request)
            entities = parse_entities(response.content)
        except Exception as exc:
            await self._record_failure(paper.id, ExtractionStage.entity, ENTITY_PRODUCER, stage_input, exc, started)
            raise

        await self.records.append(
            paper_id=paper.id,
            stage=ExtractionStage.entity,
            producer=ENTITY_PRODUCER,
            input={**stage_input, "model": response.model_name},
            output={"entities": [e.model_dump(mode="json", by_alias=True) for e in entities]},
            success=True,
            duration_ms=_elapsed_ms(started),
        )
        logger.info("extracted %d entities from paper %s", len(entities), paper.id)
        return entities

    async def _known_paper_titles(self, paper: Paper) -> list[str]:
        try:
            recent = await self.papers.recent_completed(self.settings.context_paper_limit)
        except SQLAlchemyError as exc:
            logger.warning("could not load known papers for context: %s", exc)
            return []
        return [p.title for p in recent if p.id != paper.id]

    async def _extract_relationships(
        self,
        paper: Paper,
        entities: list[ExtractedEntity],
        body: str,
    ) -> list[ExtractedRelationship]:
        started = time.monotonic()
        known_titles = await self._known_paper_titles(paper)
        request = AnalysisRequest(
            instructions=prompts.RELATIONSHIP_INSTRUCTIONS,
            content=prompts.render_relationship_prompt(
                title=paper.title,
                entities=[(e.name, e.kind.value) for e in entities],
                known_papers=known_titles,
                body=body,
            ),
            temperature=self.settings.relationship_temperature,
            max_output_tokens=self.settings.max_output_tokens,
            structured_output_required=True,
        )
        stage_input = {
            "title": paper.title,
            "entities": len(entities),
            "known_papers": len(known_titles),
            "content_chars": len(request.content),
        }
        try:
            response = await self.client.analyze(request)
            relationships = parse_relationships(response.content)
        except Exception as exc:
            await self._record_failure(
                paper.id, ExtractionStage.relationship, RELATIONSHIP_PRODUCER, stage_input, exc, started
            )
            raise

        await self.records.append(
            paper_id=paper.id,
            stage=ExtractionStage.relationship,
            producer=RELATIONSHIP_PRODUCER,
            input={**stage_input, "model": response.model_name},
            output={"relationships": [r.model_dump(mode="json", by_alias=True) for r in relationships]},
            success=True,
            duration_ms=_elapsed_ms(started),
        )
        logger.info("extracted %d relationships from paper %s", len(relationships), paper.id)
        return relationships

    async def _validate(
        self,
        paper: Paper,
        entities: list[ExtractedEntity],
        relationships: list[ExtractedRelationship],
        paper_names: list[str],
    ) -> ValidatedExtraction:
        started = time.monotonic()
        validated = validate_extraction(
            entities,
            relationships,
            paper_names=paper_names,
            require_both_local=self.settings.require_both_local_endpoints,
        )
        await self.records.append(
            paper_id=paper.id,
            stage=ExtractionStage.validation,
            producer=VALIDATION_PRODUCER,
            input={"entities": len(entities), "relationships": len(relationships)},
            output={
                "entities": len(validated.entities),
                "relationships": len(validated.relationships),
                "dropped_entities": validated.dropped_entities,
                "dropped_relationships": validated.dropped_relationships,
            },
            success=True,
            duration_ms=_elapsed_ms(started),
        )
        return validated

    async def _persist(
        self,
        paper: Paper,
        validated: ValidatedExtraction,
        paper_names: list[str],
    ) -> tuple[dict[str, uuid.UUID], EdgeBatchResult]:
        node_ids = await self.nodes.batch_upsert(validated.entities, source=ENTITY_PRODUCER)
        resolver = EntityResolver(
            self.nodes,
            local_ids=node_ids,
            paper_id=paper.id,
            paper_names=paper_names,
            candidates=self.settings.resolver_candidates,
            min_score=self.settings.resolver_min_score,
        )
        edge_result = await self.edges.batch_create_from_extraction(
            validated.relationships,
            resolver.require,
            source=RELATIONSHIP_PRODUCER,
        )
        return node_ids, edge_result

    async def _paper_names(self, paper: Paper) -> list[str]:
        # The paper node keeps its first title when a re-ingest renames the paper.
        names = [paper.title]
        node = await self.nodes.find_by_id(paper.id)
        if node is not None and node.name != paper.title:
            names.append(node.name)
        return names

    async def _record_failure(
        self,
        paper_id: uuid.UUID,
        stage: ExtractionStage,
        producer: str,
        stage_input: dict[str, Any],
        exc: BaseException,
        started: float,
    ) -> None:
        await self.records.append(
            paper_id=paper_id,
            stage=stage,
            producer=producer,
            input=stage_input,
            output=_error_output(exc),
            success=False,
            error=_error_message(exc),
            duration_ms=_elapsed_ms(started),
        )

    async def _fail(self, paper: Paper, run: PipelineRun, exc: BaseException, started: float) -> None:
        failed_in = run.state
        if PipelineState.failed in _TRANSITIONS[run.state]:
            run.advance(PipelineState.failed)
        logger.error("paper %s failed in %s: %s", paper.id, failed_in.value, _error_message(exc))
        try:
            await self.papers.update_status(paper.id, ProcessingStatus.failed)
        except ScholarGraphError as status_exc:
            logger.error("could not mark paper %s failed: %s", paper.id, status_exc.message)
        await self._record_failure(
            paper.id,
            ExtractionStage.pipeline,
            PIPELINE_PRODUCER,
            {"title": paper.title, "history": [s.value for s in run.history]},
            exc,
            started,
        )
