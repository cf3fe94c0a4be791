"""
Batch Executor.

Sends one batch of reviews to the extraction model and turns the structured
response into CategoryInsights with token and cost accounting.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from src.models.insight import CategoryInsights, decode_category_insights
from src.models.review import Review
from src.utils.llm_client import (
    CompletionError,
    ModelPricing,
    classify_completion_error,
)
from src.utils.prompts import EXTRACTION_SYSTEM_PROMPT, render_batch_prompt

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Output of one batch: insights plus the usage the call consumed."""
    insights: CategoryInsights = field(default_factory=dict)
    tokens_used: int = 0
    cost: float = 0.0
    malformed: bool = False


class BatchExecutor:
    """
    Runs one batch through the extraction model.

    Malformed output degrades to an empty result. Rate limits and timeouts
    are raised as RateLimitError / CompletionTimeoutError so the caller can
    apply its retry policy; every other failure is raised as CompletionError.
    """

    def __init__(
        self,
        client,
        model_name: str = "gemini-1.5-flash",
        pricing: Optional[ModelPricing] = None,
        temperature: float = 0.1,
        allowed_categories: Optional[Iterable[str]] = None
    ):
        """
        Initialize batch executor.

        Args:
            client: Completion collaborator exposing complete(...)
            model_name: Extraction model
            pricing: Per-million-token rates for the extraction model
            temperature: LLM temperature (low for stable structured output)
            allowed_categories: Optional label set; other categories are dropped
        """
        self.client = client
        self.model_name = model_name
        self.pricing = pricing or ModelPricing(input_rate=0.0, output_rate=0.0)
        self.temperature = temperature
        self.allowed_categories = set(allowed_categories) if allowed_categories else None

        logger.info(f"Initialized BatchExecutor with model={model_name}, temp={temperature}")

    def execute_batch(self, batch: List[Review], prompt_template: str) -> BatchResult:
        """
        Extract category insights from one batch.

        Args:
            batch: Contiguous slice of reviews
            prompt_template: Template containing the {{reviews}} placeholder

        Returns:
            BatchResult (empty insights on malformed output)

        Raises:
            RateLimitError, CompletionTimeoutError, CompletionError
        """
        prompt = render_batch_prompt(prompt_template, batch)
        logger.debug(f"Processing batch with {len(batch)} reviews")

        try:
            completion = self.client.complete(
                system_instruction=EXTRACTION_SYSTEM_PROMPT,
                user_prompt=prompt,
                model_name=self.model_name,
                temperature=self.temperature,
                json_output=True
            )
        except CompletionError:
            raise
        except Exception as e:
            raise classify_completion_error(e) from e

        tokens_used = completion.prompt_tokens + completion.completion_tokens
        cost = self.pricing.cost(completion.prompt_tokens, completion.completion_tokens)

        insights, malformed = self._parse_response(completion.text)

        return BatchResult(
            insights=insights,
            tokens_used=tokens_used,
            cost=cost,
            malformed=malformed
        )

    def _parse_response(self, response_text: str):
        """
        Parse LLM JSON into CategoryInsights.

        Returns:
            (insights, malformed) tuple
        """
        try:
            data = json.loads(response_text or "")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse batch JSON, using empty result: {e}")
            return {}, True

        if not isinstance(data, dict):
            logger.warning(f"Batch response is {type(data).__name__}, not an object; using empty result")
            return {}, True

        insights = decode_category_insights(data)

        if self.allowed_categories is not None:
            unknown = [c for c in insights if c not in self.allowed_categories]
            for category in unknown:
                logger.warning(f"Dropping unknown category '{category}'")
                del insights[category]

        return insights, False
