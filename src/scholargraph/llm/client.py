from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AnalysisRequest:
    instructions: str
    content: str
    temperature: float = 0.3
    max_output_tokens: int = 4000
    structured_output_required: bool = True


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class AnalysisResponse:
    content: str
    model_name: str
    token_usage: TokenUsage | None = None


class TextAnalysisClient(Protocol):
    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse: ...
