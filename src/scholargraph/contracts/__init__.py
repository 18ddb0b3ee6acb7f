from scholargraph.contracts.models import (
    ExtractedEntity,
    ExtractedRelationship,
    parse_entities,
    parse_relationships,
)
from scholargraph.contracts.parse import parse_json_object
from scholargraph.contracts.validate import load_schema, validate_json

__all__ = [
    "ExtractedEntity",
    "ExtractedRelationship",
    "load_schema",
    "parse_entities",
    "parse_json_object",
    "parse_relationships",
    "validate_json",
]
