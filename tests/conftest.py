from __future__ import annotations

import json
from typing import Callable

import pytest

from scholargraph.db.session import Database
from scholargraph.errors import ExternalServiceError
from scholargraph.llm.client import AnalysisRequest, AnalysisResponse, TokenUsage
from scholargraph.pipeline import prompts
from scholargraph.settings import Settings


def entities_json(*entities: tuple) -> str:
    """entities_json(("Technique X", "technique", 0.9), ...)"""
    items = []
    for entity in entities:
        name, kind = entity[0], entity[1]
        item = {"name": name, "type": kind, "description": f"{name} description"}
        if len(entity) > 2:
            item["confidence"] = entity[2]
        items.append(item)
    return json.dumps({"entities": items})


def relationships_json(*relationships: tuple) -> str:
    """relationships_json(("Method Y", "Technique X", "builds_upon"), ...)"""
    items = []
    for rel in relationships:
        source, target, kind = rel[0], rel[1], rel[2]
        item = {"source": source, "target": target, "type": kind, "evidence": f"{source} {kind} {target}"}
        if len(rel) > 3:
            item["confidence"] = rel[3]
        items.append(item)
    return json.dumps({"relationships": items})


def title_of(request: AnalysisRequest) -> str:
    for line in request.content.splitlines():
        if line.startswith("PAPER TITLE: "):
            return line[len("PAPER TITLE: ") :]
        if line.startswith("PAPER: "):
            return line[len("PAPER: ") :]
    raise AssertionError("request does not name a paper")


def is_entity_request(request: AnalysisRequest) -> bool:
    return request.instructions == prompts.ENTITY_INSTRUCTIONS


class ScriptedAnalysisClient:
    """
    Fake text-analysis capability answering per paper title.

    `scripts[title] = (entity_output, relationship_output)`; an output may be a string
    or an exception instance to raise.
    """

    def __init__(self, scripts: dict[str, tuple] | None = None):
        self.scripts = dict(scripts or {})
        self.requests: list[AnalysisRequest] = []

    def script(self, title: str, entities: str | Exception, relationships: str | Exception) -> None:
        self.scripts[title] = (entities, relationships)

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        self.requests.append(request)
        title = title_of(request)
        if title not in self.scripts:
            raise ExternalServiceError(f"no script for {title!r}", status_code=500)
        entity_output, relationship_output = self.scripts[title]
        output = entity_output if is_entity_request(request) else relationship_output
        if isinstance(output, Exception):
            raise output
        return AnalysisResponse(content=output, model_name="fake-model", token_usage=TokenUsage(10, 20))


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'graph.db'}")
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'graph.db'}",
        openai_api_key="test-key",
        chunk_delay_s=0.0,
    )


@pytest.fixture
def client() -> ScriptedAnalysisClient:
    return ScriptedAnalysisClient()


@pytest.fixture
def make_entities() -> Callable[..., str]:
    return entities_json


@pytest.fixture
def make_relationships() -> Callable[..., str]:
    return relationships_json
