"""
Insight data model.

Represents quote-backed insights grouped by category. CategoryInsights is the
exchange structure passed between every pipeline stage.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Insight:
    """
    A pattern-labeled observation backed by verbatim customer quotes.
    """
    quotes: List[str] = field(default_factory=list)  # Unique, first-seen order
    context: str = ""  # Free-text explanation
    pattern: str = ""  # Short label (5-10 words ideal)

    @classmethod
    def from_dict(cls, data: dict) -> "Insight":
        """Create Insight from JSON dict."""
        return cls(
            quotes=list(data.get("quotes", [])),
            context=data.get("context", ""),
            pattern=data.get("pattern", "")
        )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "quotes": list(self.quotes),
            "context": self.context,
            "pattern": self.pattern
        }

    def copy(self) -> "Insight":
        return Insight(quotes=list(self.quotes), context=self.context, pattern=self.pattern)


# category name -> ordered insights
CategoryInsights = Dict[str, List[Insight]]


def category_insights_to_dict(insights: CategoryInsights) -> Dict[str, dict]:
    """Convert to the wire shape: {category: {"insights": [...]}}."""
    return {
        category: {"insights": [insight.to_dict() for insight in items]}
        for category, items in insights.items()
    }


def category_insights_from_dict(data: Dict[str, dict]) -> CategoryInsights:
    """Rebuild from the wire shape written by category_insights_to_dict."""
    return {
        category: [Insight.from_dict(item) for item in value.get("insights", [])]
        for category, value in data.items()
    }


def count_insights(insights: CategoryInsights) -> int:
    return sum(len(items) for items in insights.values())


def count_quotes(insights: CategoryInsights) -> int:
    return sum(len(i.quotes) for items in insights.values() for i in items)


def decode_insight(item: Any) -> Optional[Insight]:
    """
    Decode a single insight from untrusted LLM output.

    Returns None when the item cannot be interpreted as an insight.
    """
    if not isinstance(item, dict):
        return None

    raw_quotes = item.get("quotes") or []
    if isinstance(raw_quotes, str):
        raw_quotes = [raw_quotes]
    if not isinstance(raw_quotes, list):
        return None

    quotes: List[str] = []
    for quote in raw_quotes:
        if isinstance(quote, str) and quote not in quotes:
            quotes.append(quote)

    # null fields decode as empty
    context = item.get("context") or ""
    pattern = item.get("pattern") or ""
    if not isinstance(context, str) or not isinstance(pattern, str):
        return None

    if not quotes and not pattern.strip():
        return None

    return Insight(quotes=quotes, context=context, pattern=pattern)


def decode_insight_list(value: Any) -> Optional[List[Insight]]:
    """
    Decode one category's insights.

    Accepts {"insights": [...]}, one extra wrapper level
    {"insights": {"insights": [...]}}, or a bare list. Returns None for
    anything else.
    """
    if isinstance(value, dict):
        value = value.get("insights")
        if isinstance(value, dict):
            value = value.get("insights")

    if not isinstance(value, list):
        return None

    decoded = []
    for item in value:
        insight = decode_insight(item)
        if insight is None:
            logger.debug(f"Dropping undecodable insight: {item!r}")
            continue
        decoded.append(insight)
    return decoded


def decode_category_insights(data: Any) -> CategoryInsights:
    """
    Defensively decode a CategoryInsights structure from parsed JSON.

    Attempts the primary shape, falls back to one level of "insights"
    unwrapping, and treats anything else as empty.
    """
    if not isinstance(data, dict):
        return {}

    # Whole payload wrapped in a single "insights" key
    if set(data.keys()) == {"insights"} and isinstance(data["insights"], dict):
        inner = data["insights"]
        if not isinstance(inner.get("insights"), (list, dict)):
            data = inner

    result: CategoryInsights = {}
    for category, value in data.items():
        if not isinstance(category, str) or not category.strip():
            continue
        items = decode_insight_list(value)
        if items is None:
            logger.warning(f"Unrecognized shape for category '{category}', skipping")
            continue
        if items:
            result[category] = items
    return result
