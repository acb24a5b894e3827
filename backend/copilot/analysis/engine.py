"""Analysis engines that turn a transcript into a validated ``StructuredAnalysis``."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from time import perf_counter
from typing import TYPE_CHECKING

from copilot.analysis.client import ModelClient, OpenAIChatCompletionsClient
from copilot.analysis.prompts import ANALYSIS_PROMPT_VERSION, build_analysis_prompt
from copilot.analysis.retry import call_with_retry
from copilot.analysis.types import StructuredAnalysis
from copilot.analysis.validator import parse_analysis_output
from copilot.errors import ConfigurationError, SchemaValidationError, TransientProviderError

if TYPE_CHECKING:
    from copilot.config import Settings

logger = logging.getLogger(__name__)


class AnalysisEngine(ABC):
    """Abstract analysis engine interface."""

    @abstractmethod
    def analyze(self, transcript: str, concept: str) -> StructuredAnalysis:
        """Return a validated analysis of one session transcript."""

    @property
    def model_name(self) -> str:
        return self.__class__.__name__

    @property
    def prompt_version(self) -> str:
        return ANALYSIS_PROMPT_VERSION


class LLMAnalysisEngine(AnalysisEngine):
    """Model-backed engine with schema validation and exponential backoff.

    Schema validation failures consume the same attempt budget as provider
    failures; the last error is raised once the budget is spent.
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        temperature: float = 0.1,
        max_output_tokens: int = 2048,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep

    def analyze(self, transcript: str, concept: str) -> StructuredAnalysis:
        prompt = build_analysis_prompt(transcript, concept)
        started = perf_counter()
        analysis = call_with_retry(
            lambda: self._attempt(prompt),
            max_attempts=self._max_attempts,
            base_delay=self._retry_base_delay,
            retry_on=(TransientProviderError, SchemaValidationError),
            sleep=self._sleep,
            description=f"analysis.model_call model={self.model_name}",
        )
        logger.info(
            "analysis.engine_timing model=%s prompt_version=%s transcript_chars=%d risk_flag=%s total_ms=%.2f",
            self.model_name,
            self.prompt_version,
            len(transcript),
            analysis.risk_flag,
            (perf_counter() - started) * 1000.0,
        )
        return analysis

    def _attempt(self, prompt: str) -> StructuredAnalysis:
        raw = self._client.generate_structured(
            prompt,
            temperature=self._temperature,
            max_tokens=self._max_output_tokens,
            json_only=True,
        )
        try:
            return parse_analysis_output(raw)
        except SchemaValidationError as exc:
            logger.debug("analysis.invalid_output model=%s error=%s raw=%.500s", self.model_name, exc, raw)
            raise

    @property
    def model_name(self) -> str:
        return str(getattr(self._client, "model", self._client.__class__.__name__))


def build_analysis_engine(settings: Settings) -> AnalysisEngine:
    """Return the model-backed engine, the mock engine, or fail on missing configuration."""

    if settings.openai_api_key:
        return LLMAnalysisEngine(
            OpenAIChatCompletionsClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.openai_base_url,
                timeout_seconds=settings.openai_timeout_seconds,
            ),
            temperature=settings.analysis_temperature,
            max_output_tokens=settings.analysis_max_output_tokens,
            max_attempts=settings.analysis_max_attempts,
            retry_base_delay=settings.analysis_retry_base_delay_seconds,
        )
    if settings.analysis_mock_mode:
        from copilot.analysis.mock_engine import MockAnalysisEngine

        return MockAnalysisEngine(delay_seconds=settings.analysis_mock_delay_seconds)
    raise ConfigurationError(
        "OPENAI_API_KEY is not configured. Set it in backend/.env, or set ANALYSIS_MOCK_MODE=true for demo analysis."
    )
