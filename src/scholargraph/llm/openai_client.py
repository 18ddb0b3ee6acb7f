from __future__ import annotations

import logging

import httpx
import openai

from scholargraph.errors import ExternalServiceError, ParseError
from scholargraph.llm.client import AnalysisRequest, AnalysisResponse, TokenUsage
from scholargraph.settings import Settings

logger = logging.getLogger(__name__)


class OpenAIAnalysisClient:
    """
    Text-analysis capability over any OpenAI-compatible chat-completions endpoint.

    Retries for timeouts, 429s and 5xx are delegated to the SDK (bounded by
    `max_retries`); whatever still fails surfaces as ExternalServiceError so the
    orchestrator fails only the current paper.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        max_retries: int = 2,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 10.0))
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=self._http_client,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIAnalysisClient":
        return cls(
            api_key=settings.openai_api_key or "",
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_s=settings.llm_timeout_s,
            max_retries=settings.llm_max_retries,
        )

    async def __aenter__(self) -> "OpenAIAnalysisClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        # The SDK closes its http client; a caller-supplied one stays open for its owner.
        if self._owns_http_client:
            await self._client.close()

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        kwargs = {}
        if request.structured_output_required:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": request.instructions},
                    {"role": "user", "content": request.content},
                ],
                temperature=request.temperature,
                max_tokens=request.max_output_tokens,
                **kwargs,
            )
        except openai.APITimeoutError as exc:
            raise ExternalServiceError(f"Text analysis timed out: {exc}", retryable=True) from exc
        except openai.RateLimitError as exc:
            raise ExternalServiceError(
                f"Text analysis rate limited: {exc.message}", status_code=exc.status_code, retryable=True
            ) from exc
        except openai.APIStatusError as exc:
            raise ExternalServiceError(
                f"Text analysis error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                retryable=exc.status_code >= 500,
            ) from exc
        except openai.APIConnectionError as exc:
            raise ExternalServiceError(f"Text analysis unreachable: {exc}", retryable=True) from exc

        choices = response.choices or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ParseError("Empty response from text analysis")

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        logger.debug("analysis completed model=%s chars=%d", response.model, len(content))
        return AnalysisResponse(content=content, model_name=response.model or self.model, token_usage=usage)
