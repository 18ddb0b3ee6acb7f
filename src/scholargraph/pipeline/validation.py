from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from scholargraph.contracts.models import ExtractedEntity, ExtractedRelationship
from scholargraph.normalize import clamp_confidence, normalize_name


@dataclass
class ValidatedExtraction:
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)
    dropped_entities: int = 0
    dropped_relationships: int = 0


def dedupe_entities(entities: Iterable[ExtractedEntity]) -> tuple[list[ExtractedEntity], int]:
    """
    One entity per canonical name, keeping the highest confidence.

    The survivor keeps the position of the first occurrence; on equal confidence the
    first occurrence wins. Names without a canonical form are dropped.
    """
    best: dict[str, ExtractedEntity] = {}
    dropped = 0
    for entity in entities:
        canonical = normalize_name(entity.name)
        if not canonical:
            dropped += 1
            continue
        entity = entity.model_copy(update={"confidence": clamp_confidence(entity.confidence)})
        current = best.get(canonical)
        if current is None:
            best[canonical] = entity
            continue
        dropped += 1
        if entity.confidence > current.confidence:
            best[canonical] = entity
    return list(best.values()), dropped


def filter_relationships(
    relationships: Iterable[ExtractedRelationship],
    known_names: set[str],
    *,
    require_both: bool = False,
) -> tuple[list[ExtractedRelationship], int]:
    kept = []
    dropped = 0
    for rel in relationships:
        source_known = normalize_name(rel.source) in known_names
        target_known = normalize_name(rel.target) in known_names
        ok = (source_known and target_known) if require_both else (source_known or target_known)
        if not ok:
            dropped += 1
            continue
        kept.append(rel.model_copy(update={"confidence": clamp_confidence(rel.confidence)}))
    return kept, dropped


def validate_extraction(
    entities: Sequence[ExtractedEntity],
    relationships: Sequence[ExtractedRelationship],
    *,
    paper_names: Iterable[str],
    require_both_local: bool = False,
) -> ValidatedExtraction:
    """
    Stage 3: dedupe entities and drop relationships unanchored in this paper.

    A relationship is kept when at least one endpoint is one of the deduplicated
    entities or the paper itself (`paper_names`); with `require_both_local` both
    endpoints must be.
    """
    deduped, dropped_entities = dedupe_entities(entities)
    known = {normalize_name(e.name) for e in deduped}
    known.update(normalize_name(n) for n in paper_names if n)
    known.discard("")
    kept, dropped_relationships = filter_relationships(relationships, known, require_both=require_both_local)
    return ValidatedExtraction(
        entities=deduped,
        relationships=kept,
        dropped_entities=dropped_entities,
        dropped_relationships=dropped_relationships,
    )
