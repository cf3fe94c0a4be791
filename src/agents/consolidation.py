"""
Insight Consolidation Agent.

Second-pass semantic deduplication of merged insights using a more capable
model, either in one global call or one call per category. Failure never
loses data: the merged input is returned for the failed scope.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from src.agents.merger import InsightMerger
from src.models.insight import (
    CategoryInsights,
    Insight,
    category_insights_to_dict,
    count_insights,
    decode_category_insights,
    decode_insight_list,
)
from src.utils.llm_client import ModelPricing, RateLimitError, classify_completion_error
from src.utils.prompts import (
    CONSOLIDATION_SYSTEM_PROMPT,
    build_category_consolidation_prompt,
    build_global_consolidation_prompt,
)

logger = logging.getLogger(__name__)

GRANULARITIES = ("global", "category", "auto")

# (category, position, eligible_total, tokens_so_far, cost_so_far)
CategoryCallback = Callable[[str, int, int, int, float], None]


@dataclass
class ConsolidationResult:
    """Consolidated insights plus the usage of successful calls."""
    insights: CategoryInsights = field(default_factory=dict)
    tokens_used: int = 0
    cost: float = 0.0
    interrupted: bool = False  # Cancelled before every category was visited


class InsightConsolidator:
    """
    Consolidates merged insights with the consolidation model.

    Decision process per scope:
    1. Categories with <= skip_threshold insights pass through untouched
    2. Remaining insights go to the model with merge/keep-separate rules
    3. Output is decoded defensively and re-checked with the merger
    4. Any failure returns that scope's merged input with zero usage
    """

    def __init__(
        self,
        client,
        merger: Optional[InsightMerger] = None,
        model_name: str = "gemini-1.5-pro",
        pricing: Optional[ModelPricing] = None,
        temperature: float = 0.1,
        skip_threshold: int = 3,
        target_min: int = 3,
        target_max: int = 7,
        per_category_min_insights: int = 60,
        max_retries: int = 2,
        rate_limit_backoff: float = 10.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize consolidation agent.

        Args:
            client: Completion collaborator exposing complete(...)
            merger: Merger used to re-check consolidated output
            model_name: Consolidation model
            pricing: Per-million-token rates for the consolidation model
            temperature: LLM temperature
            skip_threshold: Categories at or below this size are passed through
            target_min: Lower bound of the per-category density target
            target_max: Upper bound of the per-category density target
            per_category_min_insights: "auto" granularity switches to
                per-category above this many merged insights
            max_retries: Attempts per scope when rate limited
            rate_limit_backoff: Seconds to wait before a rate-limit retry
            sleep: Sleep function (injectable for tests)
        """
        self.client = client
        self.merger = merger or InsightMerger()
        self.model_name = model_name
        self.pricing = pricing or ModelPricing(input_rate=0.0, output_rate=0.0)
        self.temperature = temperature
        self.skip_threshold = skip_threshold
        self.target_min = target_min
        self.target_max = target_max
        self.per_category_min_insights = per_category_min_insights
        self.max_retries = max(1, max_retries)
        self.rate_limit_backoff = rate_limit_backoff
        self.sleep = sleep

        logger.info(
            f"Initialized InsightConsolidator: model={model_name}, "
            f"skip<={skip_threshold}, target={target_min}-{target_max}"
        )

    def is_eligible(self, insights: List[Insight]) -> bool:
        """Whether a category is dense enough to be worth a consolidation call."""
        return len(insights) > self.skip_threshold

    def resolve_granularity(self, merged: CategoryInsights, granularity: str) -> str:
        if granularity not in GRANULARITIES:
            raise ValueError(f"Invalid granularity: {granularity}. Must be one of {GRANULARITIES}")
        if granularity == "auto":
            if count_insights(merged) > self.per_category_min_insights:
                return "category"
            return "global"
        return granularity

    def consolidate(
        self,
        merged: CategoryInsights,
        granularity: str = "global",
        cancel_token=None,
        on_category: Optional[CategoryCallback] = None
    ) -> ConsolidationResult:
        """
        Consolidate merged insights.

        Args:
            merged: Output of the Progressive Merger
            granularity: "global", "category" or "auto"
            cancel_token: Checked before each category call (per-category mode)
            on_category: Called after each per-category step

        Returns:
            ConsolidationResult; insights are `merged` itself when nothing changed
        """
        mode = self.resolve_granularity(merged, granularity)
        logger.info(
            f"Consolidating {count_insights(merged)} insights in "
            f"{len(merged)} categories ({mode})"
        )

        if mode == "category":
            return self._consolidate_per_category(merged, cancel_token, on_category)
        return self._consolidate_global(merged)

    def _consolidate_global(self, merged: CategoryInsights) -> ConsolidationResult:
        eligible = {c: items for c, items in merged.items() if self.is_eligible(items)}
        if not eligible:
            logger.info("No category above skip threshold, skipping consolidation")
            return ConsolidationResult(insights=merged)

        payload = category_insights_to_dict(eligible)
        prompt = build_global_consolidation_prompt(
            payload,
            total_insights=count_insights(eligible),
            target_min=self.target_min,
            target_max=self.target_max
        )

        outcome = self._request(prompt, scope="global")
        if outcome is None:
            return ConsolidationResult(insights=merged)

        data, tokens, cost = outcome
        decoded = decode_category_insights(data)
        if not decoded:
            logger.warning("Global consolidation returned no usable categories, keeping merged insights")
            return ConsolidationResult(insights=merged)

        result: CategoryInsights = {}
        for category, items in merged.items():
            consolidated = decoded.get(category)
            if category in eligible and consolidated:
                result[category] = self.merger.deduplicate(consolidated)
                logger.info(f"'{category}': {len(items)} -> {len(result[category])} insights")
            else:
                if category in eligible:
                    logger.warning(f"Category '{category}' missing from consolidation output, keeping merged")
                result[category] = items

        extra = [c for c in decoded if c not in merged]
        if extra:
            logger.warning(f"Ignoring categories not present in input: {extra}")

        return ConsolidationResult(insights=result, tokens_used=tokens, cost=cost)

    def _consolidate_per_category(
        self,
        merged: CategoryInsights,
        cancel_token,
        on_category: Optional[CategoryCallback]
    ) -> ConsolidationResult:
        eligible = [c for c, items in merged.items() if self.is_eligible(items)]
        result: CategoryInsights = {}
        tokens_used = 0
        cost = 0.0
        interrupted = False
        position = 0

        for category, items in merged.items():
            if category not in eligible:
                result[category] = items
                continue

            if interrupted or (cancel_token is not None and cancel_token.is_cancelled):
                if not interrupted:
                    logger.warning(f"Cancellation observed before '{category}', passing remaining categories through")
                interrupted = True
                result[category] = items
                continue

            position += 1
            consolidated, step_tokens, step_cost = self._consolidate_category(category, items)
            result[category] = consolidated
            tokens_used += step_tokens
            cost += step_cost

            if on_category is not None:
                on_category(category, position, len(eligible), tokens_used, cost)

        return ConsolidationResult(
            insights=result,
            tokens_used=tokens_used,
            cost=cost,
            interrupted=interrupted
        )

    def _consolidate_category(
        self,
        category: str,
        items: List[Insight]
    ) -> Tuple[List[Insight], int, float]:
        """Consolidate one category; returns (insights, tokens, cost)."""
        prompt = build_category_consolidation_prompt(
            category,
            [i.to_dict() for i in items],
            target_min=self.target_min,
            target_max=self.target_max
        )

        outcome = self._request(prompt, scope=category)
        if outcome is None:
            return items, 0, 0.0

        data, tokens, cost = outcome
        if isinstance(data, dict) and "insights" not in data and category in data:
            data = data[category]

        decoded = decode_insight_list(data)
        if not decoded:
            logger.warning(f"Unusable consolidation output for '{category}', keeping merged insights")
            return items, 0, 0.0

        consolidated = self.merger.deduplicate(decoded)
        logger.info(f"'{category}': {len(items)} -> {len(consolidated)} insights")
        return consolidated, tokens, cost

    def _request(self, prompt: str, scope: str) -> Optional[Tuple[Any, int, float]]:
        """
        Call the consolidation model and parse JSON.

        Returns:
            (parsed_json, tokens, cost), or None when the scope should fall back
        """
        for attempt in range(self.max_retries):
            try:
                completion = self.client.complete(
                    system_instruction=CONSOLIDATION_SYSTEM_PROMPT,
                    user_prompt=prompt,
                    model_name=self.model_name,
                    temperature=self.temperature,
                    json_output=True
                )
                data = json.loads(completion.text or "")
                tokens = completion.prompt_tokens + completion.completion_tokens
                cost = self.pricing.cost(completion.prompt_tokens, completion.completion_tokens)
                return data, tokens, cost

            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse consolidation JSON for {scope}: {e}")
                break

            except Exception as e:
                error = classify_completion_error(e)
                logger.error(f"Consolidation error for {scope} (attempt {attempt + 1}): {e}")
                if isinstance(error, RateLimitError) and attempt < self.max_retries - 1:
                    logger.warning(f"Rate limited, waiting {self.rate_limit_backoff}s before retry")
                    self.sleep(self.rate_limit_backoff)
                    continue
                break

        logger.warning(f"Consolidation failed for {scope}, falling back to merged insights")
        return None
