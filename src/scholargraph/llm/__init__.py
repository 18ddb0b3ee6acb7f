from scholargraph.llm.client import AnalysisRequest, AnalysisResponse, TextAnalysisClient, TokenUsage
from scholargraph.llm.openai_client import OpenAIAnalysisClient

__all__ = [
    "AnalysisRequest",
    "AnalysisResponse",
    "OpenAIAnalysisClient",
    "TextAnalysisClient",
    "TokenUsage",
]
