"""
Completion client.

Wraps Gemini text completion behind a small interface and maps provider
failures onto the pipeline's error taxonomy.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Non-recoverable completion failure (transport, auth, bad request)."""


class RateLimitError(CompletionError):
    """Provider asked us to slow down. The same unit of work should be retried."""


class CompletionTimeoutError(CompletionError):
    """The request did not finish in time. The unit of work is skipped."""


_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "429", "resource exhausted", "quota")
_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")


def classify_completion_error(error: Exception) -> CompletionError:
    """
    Map an arbitrary exception onto the completion error taxonomy.

    Already-classified errors are returned unchanged.
    """
    if isinstance(error, CompletionError):
        return error

    if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return RateLimitError(str(error))

    if isinstance(error, (google_exceptions.DeadlineExceeded, TimeoutError)):
        return CompletionTimeoutError(str(error) or "Request timed out")

    message = str(error).lower()
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return RateLimitError(str(error))
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return CompletionTimeoutError(str(error))

    return CompletionError(str(error) or error.__class__.__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Raw completion text plus token usage."""
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token rates in USD."""
    input_rate: float
    output_rate: float

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            (prompt_tokens / 1_000_000) * self.input_rate
            + (completion_tokens / 1_000_000) * self.output_rate
        )


class GeminiCompletionClient:
    """
    Completion collaborator backed by Google Gemini.

    One GenerativeModel is cached per (model, system instruction,
    temperature, output mode) combination.
    """

    def __init__(self, api_key: str, timeout_seconds: Optional[float] = 120):
        """
        Initialize completion client.

        Args:
            api_key: Google API key
            timeout_seconds: Per-request timeout, None to use the library default
        """
        self.timeout_seconds = timeout_seconds
        self._models: Dict[Tuple[str, str, float, bool], "genai.GenerativeModel"] = {}

        genai.configure(api_key=api_key)

        logger.info(f"Initialized GeminiCompletionClient, timeout={timeout_seconds}s")

    def _get_model(
        self,
        model_name: str,
        system_instruction: str,
        temperature: float,
        json_output: bool
    ):
        key = (model_name, system_instruction, temperature, json_output)
        if key not in self._models:
            generation_config = {"temperature": temperature}
            if json_output:
                generation_config["response_mime_type"] = "application/json"
            self._models[key] = genai.GenerativeModel(
                model_name=model_name,
                generation_config=generation_config,
                system_instruction=system_instruction
            )
        return self._models[key]

    def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        model_name: str,
        temperature: float = 0.1,
        json_output: bool = True
    ) -> CompletionResult:
        """
        Run one completion request.

        Returns:
            CompletionResult with raw text and token counts

        Raises:
            RateLimitError: Provider rate limit or quota exhausted
            CompletionTimeoutError: Request deadline exceeded
            CompletionError: Any other provider failure
        """
        model = self._get_model(model_name, system_instruction, temperature, json_output)

        request_options = {}
        if self.timeout_seconds:
            request_options["timeout"] = self.timeout_seconds

        try:
            response = model.generate_content(user_prompt, request_options=request_options)
        except Exception as e:
            error = classify_completion_error(e)
            logger.warning(f"{model_name} request failed ({error.__class__.__name__}): {e}")
            raise error from e

        try:
            text = response.text
        except ValueError as e:
            # Blocked or empty candidate list
            logger.warning(f"{model_name} returned no text: {e}")
            text = ""

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = int(getattr(usage, "prompt_token_count", 0) or 0)
        completion_tokens = int(getattr(usage, "candidates_token_count", 0) or 0)

        logger.debug(
            f"{model_name} completion: {prompt_tokens} prompt + "
            f"{completion_tokens} completion tokens"
        )
        return CompletionResult(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens
        )
