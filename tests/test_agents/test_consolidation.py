"""
Unit tests for the Insight Consolidation Agent.

Note: These tests use a mocked completion client to avoid API costs.
"""

import json
from unittest.mock import MagicMock

import pytest
from src.agents.consolidation import InsightConsolidator
from src.models.insight import Insight
from src.models.progress import CancellationToken
from src.utils.llm_client import CompletionResult, ModelPricing, RateLimitError

PATTERNS = [
    "Damaged packaging",
    "Late delivery",
    "Missing items",
    "Wrong color shipped",
    "Courier rude",
    "Tracking never updated",
]


def make_insights(count, prefix="q"):
    return [
        Insight(quotes=[f"{prefix}{i}"], context=f"context {i}", pattern=PATTERNS[i])
        for i in range(count)
    ]


def completion(payload, prompt_tokens=100, completion_tokens=50):
    return CompletionResult(text=json.dumps(payload), prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)


def make_consolidator(side_effect=None, response=None, **kwargs):
    client = MagicMock()
    if side_effect is not None:
        client.complete.side_effect = side_effect
    else:
        client.complete.return_value = response
    consolidator = InsightConsolidator(
        client=client,
        pricing=ModelPricing(input_rate=1.0, output_rate=2.0),
        sleep=lambda seconds: None,
        **kwargs
    )
    return consolidator, client


def test_three_insights_pass_through_without_call():
    merged = {"Shipping": make_insights(3)}
    consolidator, client = make_consolidator(response=completion({}))

    result = consolidator.consolidate(merged)

    client.complete.assert_not_called()
    assert result.insights is merged
    assert result.tokens_used == 0


def test_four_insights_trigger_call():
    merged = {"Shipping": make_insights(4)}
    consolidated = {"Shipping": {"insights": [
        {"quotes": ["q0", "q1"], "context": "Transit problems", "pattern": "Damaged packaging"},
        {"quotes": ["q2", "q3"], "context": "Order incomplete", "pattern": "Missing items"},
    ]}}
    consolidator, client = make_consolidator(response=completion(consolidated))

    result = consolidator.consolidate(merged)

    assert client.complete.call_count == 1
    assert [i.pattern for i in result.insights["Shipping"]] == ["Damaged packaging", "Missing items"]
    assert result.tokens_used == 150
    assert result.cost == pytest.approx(100 / 1_000_000 + 50 * 2 / 1_000_000)


def test_global_sends_only_eligible_categories():
    merged = {"Shipping": make_insights(4), "Value": make_insights(2, prefix="v")}
    consolidator, client = make_consolidator(response=completion({
        "Shipping": {"insights": [{"quotes": ["q0"], "context": "", "pattern": "Damaged packaging"}]}
    }))

    result = consolidator.consolidate(merged)

    prompt = client.complete.call_args.kwargs["user_prompt"]
    assert '"Shipping"' in prompt
    assert '"Value"' not in prompt
    assert result.insights["Value"] is merged["Value"]
    assert len(result.insights["Shipping"]) == 1


def test_client_failure_returns_merged_with_zero_usage():
    merged = {"Shipping": make_insights(5)}
    consolidator, _ = make_consolidator(side_effect=RuntimeError("connection reset"))

    result = consolidator.consolidate(merged)

    assert result.insights is merged
    assert result.tokens_used == 0
    assert result.cost == 0.0


def test_invalid_json_returns_merged():
    merged = {"Shipping": make_insights(5)}
    consolidator, client = make_consolidator(response=CompletionResult(text="{{not json", prompt_tokens=9))

    result = consolidator.consolidate(merged)

    assert client.complete.call_count == 1
    assert result.insights is merged
    assert result.tokens_used == 0


def test_rate_limit_is_retried():
    merged = {"Shipping": make_insights(4)}
    good = completion({"Shipping": {"insights": [{"quotes": ["q0"], "context": "", "pattern": "Late delivery"}]}})
    consolidator, client = make_consolidator(side_effect=[RateLimitError("429"), good])

    result = consolidator.consolidate(merged)

    assert client.complete.call_count == 2
    assert result.insights["Shipping"][0].pattern == "Late delivery"


def test_missing_category_keeps_merged():
    merged = {"Shipping": make_insights(4), "Quality": make_insights(5, prefix="p")}
    consolidator, _ = make_consolidator(response=completion({
        "Quality": {"insights": [{"quotes": ["p0"], "context": "", "pattern": "Courier rude"}]},
        "Invented": {"insights": [{"quotes": ["x"], "context": "", "pattern": "Something new"}]},
    }))

    result = consolidator.consolidate(merged)

    assert result.insights["Shipping"] is merged["Shipping"]
    assert len(result.insights["Quality"]) == 1
    assert "Invented" not in result.insights


def test_top_level_insights_wrapper_is_unwrapped():
    merged = {"Shipping": make_insights(4)}
    consolidator, _ = make_consolidator(response=completion({"insights": {
        "Shipping": {"insights": [{"quotes": ["q0"], "context": "", "pattern": "Missing items"}]}
    }}))

    result = consolidator.consolidate(merged)

    assert result.insights["Shipping"][0].pattern == "Missing items"


def test_per_category_calls_each_eligible_category():
    merged = {
        "Shipping": make_insights(4),
        "Value": make_insights(1, prefix="v"),
        "Quality": make_insights(6, prefix="p"),
    }

    consolidator, client = make_consolidator(response=completion(
        {"insights": [{"quotes": ["merged"], "context": "", "pattern": "Damaged packaging"}]}
    ))
    steps = []

    result = consolidator.consolidate(
        merged,
        granularity="category",
        on_category=lambda *args: steps.append(args)
    )

    assert client.complete.call_count == 2
    assert result.insights["Value"] is merged["Value"]
    assert len(result.insights["Shipping"]) == 1
    assert len(result.insights["Quality"]) == 1
    assert [s[:3] for s in steps] == [("Shipping", 1, 2), ("Quality", 2, 2)]
    assert steps[-1][3] == result.tokens_used == 300
    assert not result.interrupted


def test_per_category_accepts_category_keyed_response():
    merged = {"Shipping": make_insights(4)}
    consolidator, _ = make_consolidator(response=completion({
        "Shipping": {"insights": [{"quotes": ["q0"], "context": "", "pattern": "Late delivery"}]}
    }))

    result = consolidator.consolidate(merged, granularity="category")

    assert result.insights["Shipping"][0].pattern == "Late delivery"


def test_per_category_failure_only_affects_that_category():
    merged = {"Shipping": make_insights(4), "Quality": make_insights(5, prefix="p")}
    good = completion({"insights": [{"quotes": ["p0"], "context": "", "pattern": "Courier rude"}]})
    consolidator, _ = make_consolidator(side_effect=[RuntimeError("boom"), good])

    result = consolidator.consolidate(merged, granularity="category")

    assert result.insights["Shipping"] is merged["Shipping"]
    assert len(result.insights["Quality"]) == 1
    assert result.tokens_used == 150


def test_per_category_stops_on_cancellation():
    merged = {"Shipping": make_insights(4), "Quality": make_insights(5, prefix="p")}
    token = CancellationToken()

    def respond(**kwargs):
        token.cancel()
        return completion({"insights": [{"quotes": ["q0"], "context": "", "pattern": "Late delivery"}]})

    consolidator, client = make_consolidator(side_effect=respond)

    result = consolidator.consolidate(merged, granularity="category", cancel_token=token)

    assert client.complete.call_count == 1
    assert result.interrupted
    assert len(result.insights["Shipping"]) == 1
    assert result.insights["Quality"] is merged["Quality"]


def test_consolidated_output_is_rechecked_for_duplicates():
    merged = {"Shipping": make_insights(4)}
    consolidator, _ = make_consolidator(response=completion({"Shipping": {"insights": [
        {"quotes": ["q0"], "context": "", "pattern": "Damaged packaging"},
        {"quotes": ["q1"], "context": "", "pattern": "Packaging damaged"},
    ]}}))

    result = consolidator.consolidate(merged)

    assert len(result.insights["Shipping"]) == 1
    assert result.insights["Shipping"][0].quotes == ["q0", "q1"]


def test_auto_granularity():
    consolidator, _ = make_consolidator(response=completion({}), per_category_min_insights=5)

    assert consolidator.resolve_granularity({"A": make_insights(5)}, "auto") == "global"
    assert consolidator.resolve_granularity({"A": make_insights(6)}, "auto") == "category"
    assert consolidator.resolve_granularity({"A": make_insights(6)}, "global") == "global"

    with pytest.raises(ValueError):
        consolidator.resolve_granularity({}, "sometimes")


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
