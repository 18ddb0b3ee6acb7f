from __future__ import annotations

import enum


class NodeKind(str, enum.Enum):
    paper = "paper"
    concept = "concept"
    method = "method"
    dataset = "dataset"
    metric = "metric"
    author = "author"
    technique = "technique"
    application = "application"
    challenge = "challenge"
    result = "result"


# Kinds the entity stage may produce; paper nodes are only created from Paper records.
EXTRACTABLE_NODE_KINDS = tuple(k for k in NodeKind if k is not NodeKind.paper)


class EdgeKind(str, enum.Enum):
    # paper -> paper
    cites = "cites"
    improves_on = "improves_on"
    extends = "extends"
    compares_with = "compares_with"
    builds_upon = "builds_upon"
    contradicts = "contradicts"
    # paper -> concept
    introduces = "introduces"
    applies = "applies"
    evaluates = "evaluates"
    addresses = "addresses"
    # concept -> concept
    related_to = "related_to"
    enables = "enables"
    requires = "requires"
    alternative_to = "alternative_to"
    generalizes = "generalizes"
    specializes = "specializes"
    # method -> method
    outperforms = "outperforms"
    combines_with = "combines_with"
    replaces = "replaces"
    authored_by = "authored_by"
    uses_dataset = "uses_dataset"
    measures_with = "measures_with"
    solves = "solves"
    inspired_by = "inspired_by"


class ProcessingStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ExtractionStage(str, enum.Enum):
    entity = "entity"
    relationship = "relationship"
    validation = "validation"
    pipeline = "pipeline"


class EdgeDirection(str, enum.Enum):
    outgoing = "outgoing"
    incoming = "incoming"
    both = "both"
