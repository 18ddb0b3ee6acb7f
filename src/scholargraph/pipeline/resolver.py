from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable

from scholargraph.errors import ResolutionFailure
from scholargraph.graph.nodes import NodeStore
from scholargraph.normalize import normalize_name

logger = logging.getLogger(__name__)


class ResolutionTier(str, enum.Enum):
    local = "local"
    self_reference = "self_reference"
    global_fuzzy = "global_fuzzy"


@dataclass(frozen=True)
class Resolution:
    node_id: uuid.UUID
    tier: ResolutionTier


class EntityResolver:
    """
    Maps an endpoint name from one paper's extraction to an existing node id.

    Tiers, first match wins:
    1. this paper's own entities (exact canonical name)
    2. the paper itself (its node name or title)
    3. the global graph via NodeStore.fuzzy_search

    Never invents an id; an unmatched name resolves to None.
    """

    def __init__(
        self,
        nodes: NodeStore,
        *,
        local_ids: dict[str, uuid.UUID],
        paper_id: uuid.UUID,
        paper_names: Iterable[str],
        candidates: int = 5,
        min_score: float = 0.0,
    ):
        self.nodes = nodes
        self.local_ids = dict(local_ids)
        self.paper_id = paper_id
        self.paper_names = {normalize_name(n) for n in paper_names if n} - {""}
        self.candidates = candidates
        self.min_score = min_score
        self._global_cache: dict[str, Resolution | None] = {}

    async def resolve(self, name: str) -> Resolution | None:
        canonical = normalize_name(name or "")
        if not canonical:
            return None

        node_id = self.local_ids.get(canonical)
        if node_id is not None:
            return Resolution(node_id, ResolutionTier.local)

        if canonical in self.paper_names:
            return Resolution(self.paper_id, ResolutionTier.self_reference)

        if canonical not in self._global_cache:
            matches = await self.nodes.fuzzy_search(name, limit=self.candidates, min_score=self.min_score)
            self._global_cache[canonical] = (
                Resolution(matches[0].id, ResolutionTier.global_fuzzy) if matches else None
            )
            if matches:
                logger.debug("resolved %r globally to %r (%.2f)", name, matches[0].name, matches[0].score)
        return self._global_cache[canonical]

    async def require(self, name: str) -> uuid.UUID:
        resolution = await self.resolve(name)
        if resolution is None:
            raise ResolutionFailure(name)
        return resolution.node_id
