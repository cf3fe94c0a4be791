"""
Unit tests for the Gemini completion client.

Note: genai is mocked, no API calls are made.
"""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from google.api_core import exceptions as google_exceptions
from src.utils.llm_client import (
    CompletionError,
    CompletionTimeoutError,
    GeminiCompletionClient,
    ModelPricing,
    RateLimitError,
    classify_completion_error,
)


@pytest.fixture
def mock_genai():
    with patch("src.utils.llm_client.genai") as genai:
        yield genai


def make_response(text="{}", prompt_tokens=12, completion_tokens=3):
    response = MagicMock()
    response.text = text
    response.usage_metadata.prompt_token_count = prompt_tokens
    response.usage_metadata.candidates_token_count = completion_tokens
    return response


def test_complete_returns_text_and_usage(mock_genai):
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.return_value = make_response('{"a": 1}', 120, 30)
    client = GeminiCompletionClient(api_key="test-key", timeout_seconds=60)

    result = client.complete("system", "prompt", "gemini-1.5-flash", temperature=0.1)

    mock_genai.configure.assert_called_once_with(api_key="test-key")
    kwargs = mock_genai.GenerativeModel.call_args.kwargs
    assert kwargs["model_name"] == "gemini-1.5-flash"
    assert kwargs["system_instruction"] == "system"
    assert kwargs["generation_config"] == {"temperature": 0.1, "response_mime_type": "application/json"}
    model.generate_content.assert_called_once_with("prompt", request_options={"timeout": 60})

    assert result.text == '{"a": 1}'
    assert result.prompt_tokens == 120
    assert result.completion_tokens == 30
    assert result.total_tokens == 150


def test_models_are_cached_per_configuration(mock_genai):
    mock_genai.GenerativeModel.return_value.generate_content.return_value = make_response()
    client = GeminiCompletionClient(api_key="test-key")

    client.complete("system", "p1", "gemini-1.5-flash")
    client.complete("system", "p2", "gemini-1.5-flash")
    client.complete("system", "p3", "gemini-1.5-pro")

    assert mock_genai.GenerativeModel.call_count == 2


def test_plain_text_mode(mock_genai):
    mock_genai.GenerativeModel.return_value.generate_content.return_value = make_response("hello")
    client = GeminiCompletionClient(api_key="test-key")

    client.complete("system", "prompt", "gemini-1.5-flash", json_output=False)

    config = mock_genai.GenerativeModel.call_args.kwargs["generation_config"]
    assert "response_mime_type" not in config


def test_blocked_response_yields_empty_text(mock_genai):
    response = make_response()
    type(response).text = PropertyMock(side_effect=ValueError("blocked"))
    mock_genai.GenerativeModel.return_value.generate_content.return_value = response
    client = GeminiCompletionClient(api_key="test-key")

    result = client.complete("system", "prompt", "gemini-1.5-flash")

    assert result.text == ""
    assert result.prompt_tokens == 12


def test_provider_errors_are_classified(mock_genai):
    model = mock_genai.GenerativeModel.return_value
    client = GeminiCompletionClient(api_key="test-key")

    model.generate_content.side_effect = google_exceptions.ResourceExhausted("quota")
    with pytest.raises(RateLimitError):
        client.complete("system", "prompt", "gemini-1.5-flash")

    model.generate_content.side_effect = google_exceptions.DeadlineExceeded("slow")
    with pytest.raises(CompletionTimeoutError):
        client.complete("system", "prompt", "gemini-1.5-flash")

    model.generate_content.side_effect = google_exceptions.PermissionDenied("bad key")
    with pytest.raises(CompletionError) as excinfo:
        client.complete("system", "prompt", "gemini-1.5-flash")
    assert type(excinfo.value) is CompletionError


@pytest.mark.parametrize("error,expected", [
    (google_exceptions.TooManyRequests("slow down"), RateLimitError),
    (TimeoutError(), CompletionTimeoutError),
    (RuntimeError("Resource exhausted: quota exceeded"), RateLimitError),
    (RuntimeError("Request timed out"), CompletionTimeoutError),
    (RuntimeError("connection reset by peer"), CompletionError),
])
def test_classify_completion_error(error, expected):
    assert type(classify_completion_error(error)) is expected


def test_classified_errors_pass_through():
    error = RateLimitError("429")
    assert classify_completion_error(error) is error


def test_pricing_per_million_tokens():
    pricing = ModelPricing(input_rate=0.075, output_rate=0.30)

    assert pricing.cost(1_000_000, 0) == pytest.approx(0.075)
    assert pricing.cost(2_000_000, 1_000_000) == pytest.approx(0.45)
    assert pricing.cost(0, 0) == 0


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
