"""
Progressive Merger.

Folds per-batch CategoryInsights into one cumulative structure. Similar
insights accumulate quotes instead of proliferating entries.
"""

import logging
from typing import Iterable, List, Optional

from src.models.insight import CategoryInsights, Insight, count_insights

logger = logging.getLogger(__name__)


class InsightMerger:
    """
    Token-overlap merge of insights within each category.

    Two insights are similar when both patterns are non-empty and the
    distinct shared tokens longer than min_token_length make up at least
    threshold of the smaller pattern's token count. The heuristic misses
    paraphrases; the Consolidator handles those.
    """

    def __init__(self, threshold: float = 0.5, min_token_length: int = 3):
        """
        Initialize merger.

        Args:
            threshold: Required share of the shorter pattern's tokens
            min_token_length: Shared tokens must be longer than this
        """
        self.threshold = threshold
        self.min_token_length = min_token_length

    def are_similar(self, first: Insight, second: Insight) -> bool:
        """Symmetric similarity predicate on insight patterns."""
        if not first.pattern or not second.pattern:
            return False

        tokens1 = first.pattern.lower().split()
        tokens2 = second.pattern.lower().split()
        if not tokens1 or not tokens2:
            return False

        shared = {
            token for token in set(tokens1) & set(tokens2)
            if len(token) > self.min_token_length
        }
        return len(shared) >= min(len(tokens1), len(tokens2)) * self.threshold

    def merge(self, accumulated: CategoryInsights, incoming: CategoryInsights) -> CategoryInsights:
        """
        Merge incoming insights into accumulated.

        accumulated is extended in place and returned; incoming is not modified.
        """
        for category, insights in incoming.items():
            existing = accumulated.setdefault(category, [])
            for insight in insights:
                self._absorb(existing, insight)
        return accumulated

    def merge_all(self, results: Iterable[CategoryInsights]) -> CategoryInsights:
        """Left fold of merge over a sequence of batch results."""
        merged: CategoryInsights = {}
        for result in results:
            self.merge(merged, result)
        logger.debug(f"Merged results into {count_insights(merged)} insights")
        return merged

    def deduplicate(self, insights: List[Insight]) -> List[Insight]:
        """Collapse similar insights within one category's list."""
        result: List[Insight] = []
        for insight in insights:
            self._absorb(result, insight)
        return result

    def _absorb(self, existing: List[Insight], insight: Insight) -> None:
        """
        Fold one insight into a category list.

        Quotes are unioned in first-seen order, context is replaced only by a
        strictly longer one, the existing pattern is kept.
        """
        match = self._find_similar(existing, insight)
        if match is None:
            existing.append(insight.copy())
            return

        for quote in insight.quotes:
            if quote not in match.quotes:
                match.quotes.append(quote)

        if len(insight.context) > len(match.context):
            match.context = insight.context

    def _find_similar(self, candidates: List[Insight], insight: Insight) -> Optional[Insight]:
        for candidate in candidates:
            if self.are_similar(candidate, insight):
                return candidate
        return None
