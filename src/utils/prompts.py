"""
Prompt templates.

Extraction template, consolidation instructions, per-category merge
guidelines, and rough token/cost estimation for previews.
"""

import json
import math
from typing import Dict, List, Optional, Sequence

from src.models.review import Review

REVIEWS_PLACEHOLDER = "{{reviews}}"

DEFAULT_CATEGORIES = [
    "Product Quality Issues",
    "Packaging & Shipping Experiences",
    "Benefits & Use Cases",
    "Value for Money Judgments",
    "Authenticity Concerns & Trust Signals",
    "Taste, Texture & Sensory Descriptions",
    "Competitor Comparisons",
    "Unexpected Uses & Discoveries",
    "Customer Service Experiences",
    "Usage Patterns & Frequency",
    "Gift-Giving & Special Occasions",
    "Product Education Gaps",
]

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at analyzing customer reviews and extracting actionable insights. "
    "Always respond with valid JSON."
)

CONSOLIDATION_SYSTEM_PROMPT = (
    "You are an expert at consolidating customer insights with multilingual capabilities. "
    "Your goal is to preserve distinct insights while only merging true duplicates. "
    "Always respond with valid JSON that maintains the exact structure provided."
)

_EXTRACTION_TEMPLATE = """Analyze these customer reviews and extract insights for the following categories:

{categories}

Reviews to analyze:
{{{{reviews}}}}

For each category where insights are found, provide:
- Multiple exact customer quotes (verbatim) - capture ALL relevant quotes
- Context explaining the insight (brief and actionable)
- Pattern: SHORT phrase (5-10 words max) - NOT a full sentence
  Good examples: "Damaged packaging", "Bitter taste", "Excellent value"
  Bad examples: "Customers are reporting damaged packaging", "Many users find the taste bitter"

IMPORTANT:
- Include the full, exact customer language (in whatever language they wrote)
- Keep quotes in their original language - they will be translated later
- If no insights exist for a category, omit it from the response

Format your response as valid JSON with this structure:
{{
  "category_name": {{
    "insights": [
      {{
        "quotes": ["exact quote 1", "exact quote 2"],
        "context": "explanation of what these quotes reveal",
        "pattern": "common theme or pattern identified"
      }}
    ]
  }}
}}"""

CATEGORY_GUIDELINES: Dict[str, str] = {
    "Product Quality Issues": (
        '- MERGE: "Product broke" + "Item broke" -> "Product breaks"\n'
        '- KEEP SEPARATE: "Breaks easily" vs "Defective on arrival" vs "Poor materials"'
    ),
    "Packaging & Shipping Experiences": (
        '- MERGE: "Box damaged" + "Package damaged" -> "Damaged packaging"\n'
        '- KEEP SEPARATE: "Damaged packaging" vs "Missing items" vs "Wrong item sent" vs "Late delivery"'
    ),
    "Benefits & Use Cases": (
        '- MERGE: "Great for traveling" + "Perfect for travel" -> "Great for travel"\n'
        '- KEEP SEPARATE: "Great for travel" vs "Perfect for office" vs "Kids love it"'
    ),
    "Value for Money Judgments": (
        '- MERGE: "Good value" + "Great value" -> "Good value"\n'
        '- KEEP SEPARATE: "Good value" vs "Overpriced" vs "Worth the premium"'
    ),
    "Authenticity Concerns & Trust Signals": (
        '- MERGE: "Fake product" + "Counterfeit item" -> "Counterfeit product"\n'
        '- KEEP SEPARATE: "Counterfeit product" vs "Trusted seller" vs "Genuine article"'
    ),
    "Taste, Texture & Sensory Descriptions": (
        '- MERGE: "Tastes great" + "Great taste" -> "Great taste"\n'
        '- KEEP SEPARATE: "Great taste" vs "Bitter aftertaste" vs "Smooth texture"'
    ),
    "Competitor Comparisons": (
        '- MERGE: "Better than Brand X" + "Superior to Brand X" -> "Better than Brand X"\n'
        "- KEEP SEPARATE: Different competitor comparisons"
    ),
    "Unexpected Uses & Discoveries": (
        "- MERGE: Similar unexpected uses\n"
        "- KEEP SEPARATE: Different creative uses or discoveries"
    ),
    "Customer Service Experiences": (
        '- MERGE: "Great support" + "Excellent support" -> "Great support"\n'
        '- KEEP SEPARATE: "Great support" vs "Slow response" vs "Unhelpful staff"'
    ),
    "Usage Patterns & Frequency": (
        '- MERGE: "Daily use" + "Use every day" -> "Daily use"\n'
        '- KEEP SEPARATE: "Daily use" vs "Weekly use" vs "Special occasions"'
    ),
    "Gift-Giving & Special Occasions": (
        '- MERGE: "Great gift" + "Perfect gift" -> "Great gift"\n'
        '- KEEP SEPARATE: "Great gift" vs "Birthday gift" vs "Holiday present"'
    ),
    "Product Education Gaps": (
        "- MERGE: Similar knowledge gaps\n"
        "- KEEP SEPARATE: Different areas of confusion or missing information"
    ),
}

GENERAL_GUIDELINE = "Apply general consolidation principles for this category."


def build_extraction_template(categories: Optional[Sequence[str]] = None) -> str:
    """Build the extraction prompt template for a set of category labels."""
    categories = list(categories or DEFAULT_CATEGORIES)
    numbered = "\n".join(f"{i}. {name}" for i, name in enumerate(categories, 1))
    return _EXTRACTION_TEMPLATE.format(categories=numbered)


DEFAULT_PROMPT_TEMPLATE = build_extraction_template()


def format_review(review: Review, index: int) -> str:
    """Render one review line; index is 1-based within its batch."""
    text = f"Review {index}: {review.content}"
    if review.rating:
        text += f" (Rating: {review.rating:g}/5)"
    if review.title:
        text += f" [Title: {review.title}]"
    return text


def render_batch_prompt(template: str, batch: Sequence[Review]) -> str:
    """Substitute a batch of reviews into the {{reviews}} placeholder."""
    reviews_text = "\n\n".join(
        format_review(review, i) for i, review in enumerate(batch, 1)
    )
    return template.replace(REVIEWS_PLACEHOLDER, reviews_text)


def get_category_guidelines(category: str) -> str:
    return CATEGORY_GUIDELINES.get(category, GENERAL_GUIDELINE)


def _consolidation_rules(target_min: int, target_max: int, scope: str) -> str:
    return f"""Your task is to intelligently consolidate these insights by:
1. ONLY merge insights that are TRUE DUPLICATES expressing the exact same issue/benefit
2. PRESERVE DISTINCT insights even if they're in the same general area
3. Keep patterns SHORT and SPECIFIC (5-10 words max) - never full sentences
4. Merge ALL quotes from truly duplicate insights into one
5. {scope} should typically have {target_min}-{target_max} distinct insights where volume allows (not just 1)
6. Translate any non-English quote to English and append " [Originally in <Language>]" to the translated text"""


def build_global_consolidation_prompt(
    payload: Dict[str, dict],
    total_insights: int,
    target_min: int = 3,
    target_max: int = 7
) -> str:
    """Prompt for consolidating every category in one call."""
    examples = "\n\n".join(
        f"{category}:\n{get_category_guidelines(category)}"
        for category in payload
        if category in CATEGORY_GUIDELINES
    )
    return f"""I have collected {total_insights} insights across multiple batches of customer reviews.

{_consolidation_rules(target_min, target_max, "Each category")}

IMPORTANT Guidelines for what to MERGE vs KEEP SEPARATE:

{examples or GENERAL_GUIDELINE}

Here are the insights to consolidate:

{json.dumps(payload, indent=2, ensure_ascii=False)}

Return a JSON object with the same structure ({{"category": {{"insights": [...]}}}}), keeping every category,
with each insight holding "quotes", "context" and "pattern"."""


def build_category_consolidation_prompt(
    category: str,
    insights: List[dict],
    target_min: int = 3,
    target_max: int = 7
) -> str:
    """Prompt for consolidating a single category."""
    total_quotes = sum(len(i.get("quotes", [])) for i in insights)
    return f"""I have collected {len(insights)} insights with {total_quotes} quotes for the "{category}" category
from multiple batches of customer reviews.

{_consolidation_rules(target_min, target_max, "This category")}

IMPORTANT Guidelines for "{category}":

{get_category_guidelines(category)}

Here are the insights to consolidate:

{json.dumps(insights, indent=2, ensure_ascii=False)}

Return a JSON object of the form {{"insights": [{{"quotes": [...], "context": "...", "pattern": "..."}}]}}."""


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 characters per token."""
    return math.ceil(len(text) / 4)
