from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scholargraph.contracts.parse import parse_json_object
from scholargraph.contracts.validate import load_schema, validate_json
from scholargraph.db.enums import EdgeKind, NodeKind
from scholargraph.errors import ParseError
from scholargraph.normalize import clamp_confidence


class ExtractedEntity(BaseModel):
    """Entity candidate produced by the entity stage; not yet persisted."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    kind: NodeKind = Field(alias="type")
    description: str | None = None
    confidence: float = 0.5
    context: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", mode="after")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("kind", mode="after")
    @classmethod
    def _not_paper(cls, value: NodeKind) -> NodeKind:
        if value is NodeKind.paper:
            raise ValueError("paper nodes come from paper records, not extraction")
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_confidence(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value


class ExtractedRelationship(BaseModel):
    """Relationship candidate between two entity (or paper) names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    kind: EdgeKind = Field(alias="type")
    description: str | None = None
    evidence: str | None = None
    confidence: float = 0.5
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source", "target", mode="after")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_confidence(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value


def _parse(content: str, schema_name: str, key: str, model: type[BaseModel]) -> list:
    obj = parse_json_object(content)
    validate_json(obj, load_schema(schema_name))
    items = []
    for idx, raw in enumerate(obj[key]):
        try:
            items.append(model.model_validate(raw))
        except ValidationError as exc:
            raise ParseError(f"Invalid {key}[{idx}]: {exc.errors()[0]['msg']}", raw=content) from exc
    return items


def parse_entities(content: str) -> list[ExtractedEntity]:
    return _parse(content, "entities", "entities", ExtractedEntity)


def parse_relationships(content: str) -> list[ExtractedRelationship]:
    return _parse(content, "relationships", "relationships", ExtractedRelationship)
