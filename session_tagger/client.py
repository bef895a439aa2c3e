"""Anthropic API client for AI tag suggestions.

Wraps the Messages API with a hard request timeout, exponential backoff
retries (tenacity) and a typed error taxonomy (see ``errors``). SDK-level
retries are disabled so that the policy here is the only one in effect.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

import anthropic
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import (
    BACKOFF_MULTIPLIER,
    INITIAL_DELAY_SECONDS,
    MAX_ATTEMPTS,
    MAX_DELAY_SECONDS,
    MAX_TOKENS,
    MODEL_NAME,
    REQUEST_TIMEOUT_SECONDS,
    TEMPERATURE,
    get_api_key,
)
from .errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResponseValidationError,
    ServerError,
    TagSuggestionError,
    UnknownError,
)
from .estimate import estimate_scan_cost
from .models import ScanCostEstimate, TagSuggestionResult
from .prompt import build_tag_prompt
from .validation import parse_suggestions

logger = logging.getLogger(__name__)

T = TypeVar("T")

_exponential_backoff = wait_exponential(
    multiplier=INITIAL_DELAY_SECONDS,
    min=INITIAL_DELAY_SECONDS,
    max=MAX_DELAY_SECONDS,
    exp_base=BACKOFF_MULTIPLIER,
)


def backoff_wait(retry_state: RetryCallState) -> float:
    """Exponential backoff, stretched to a rate limit's retry-after (capped)."""
    delay = _exponential_backoff(retry_state)
    error = classify_error(retry_state.outcome.exception())
    if isinstance(error, RateLimitError) and error.retry_after:
        delay = min(MAX_DELAY_SECONDS, max(delay, error.retry_after))
    return delay


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, Exception) and classify_error(error).retryable


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_error(error: Exception) -> TagSuggestionError:
    """Map an SDK or transport exception onto the error taxonomy."""
    if isinstance(error, TagSuggestionError):
        return error

    if isinstance(error, anthropic.APITimeoutError):
        return RequestTimeoutError()

    if isinstance(error, anthropic.APIConnectionError):
        return NetworkError(f"Network error: {error}")

    if isinstance(error, anthropic.APIStatusError):
        status = error.status_code
        if status == 401:
            return AuthenticationError("Invalid Anthropic API key")
        if status == 429:
            retry_after = _parse_retry_after(error.response.headers.get("retry-after"))
            return RateLimitError("Rate limit exceeded", retry_after=retry_after)
        if status >= 500:
            return ServerError(f"Anthropic API server error: {status}", status_code=status)
        logger.error(f"Anthropic API error {status}: {error.message}")
        return ApiError(f"Anthropic API error: {status}", status_code=status)

    return UnknownError(str(error) or type(error).__name__)


class TagSuggestionClient:
    """Generates tag suggestions for a rendered session context."""

    def __init__(
        self,
        client: Optional[anthropic.Anthropic] = None,
        api_key: Optional[str] = None,
        model: str = MODEL_NAME,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._api_key = api_key
        self.model = model
        self.max_attempts = max_attempts
        self._sleep = sleep

    def _resolve_api_key(self) -> str:
        key = self._api_key or get_api_key()
        if not key:
            raise AuthenticationError(
                "Anthropic API key not found. Set ANTHROPIC_API_KEY environment variable.",
                status_code=None,
            )
        return key

    def _get_client(self, api_key: str) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=api_key,
                timeout=REQUEST_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def with_retry(self, fn: Callable[[], T], operation: str) -> T:
        """Run fn, retrying retryable failures with exponential backoff.

        The final failure is re-raised as a TagSuggestionError.
        """

        def log_retry(retry_state: RetryCallState):
            error = classify_error(retry_state.outcome.exception())
            logger.warning(
                f"{operation} failed (attempt {retry_state.attempt_number}/{self.max_attempts}), "
                f"retrying in {retry_state.next_action.sleep:.1f}s: {error}"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=backoff_wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            return retrying(fn)
        except Exception as e:
            error = classify_error(e)
            if error.retryable:
                logger.error(f"{operation} failed after {self.max_attempts} attempts: {error}")
            if error is e:
                raise
            raise error from e

    def _call_api(self, prompt: str, api_key: str) -> str:
        response = self._get_client(api_key).messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
            messages=[{"role": "user", "content": prompt}],
        )

        content = getattr(response, "content", None)
        if not content:
            raise ResponseValidationError("No content in API response")

        for block in content:
            if getattr(block, "type", None) == "text" and isinstance(getattr(block, "text", None), str):
                return block.text

        raise ResponseValidationError("No text content in API response")

    def suggest(self, context: str, existing_tags: list[str]) -> list[TagSuggestionResult]:
        """Generate tag suggestions for a rendered session context.

        Args:
            context: Rendered session context (see ``context.render_context``)
            existing_tags: Tag vocabulary already present in the system

        Returns:
            Validated suggestions, empty for a blank context

        Raises:
            AuthenticationError: API key missing or rejected
            TagSuggestionError: any other API or validation failure
        """
        if not context or not context.strip():
            logger.warning("Empty context provided to suggest")
            return []

        api_key = self._resolve_api_key()

        start_time = time.time()
        logger.info(
            f"Generating tag suggestions (context {len(context)} chars, "
            f"{len(existing_tags)} existing tags)"
        )

        try:
            prompt = build_tag_prompt(context, existing_tags)
            response_text = self.with_retry(
                lambda: self._call_api(prompt, api_key),
                "suggest",
            )
            suggestions = parse_suggestions(response_text)
        except TagSuggestionError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.error(f"Failed to generate tag suggestions after {elapsed_ms}ms: {e}")
            raise

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Generated {len(suggestions)} tag suggestions in {elapsed_ms}ms")
        return suggestions

    def suggest_batch(
        self,
        contexts: list[tuple[str, str]],
        existing_tags: list[str],
    ) -> dict[str, list[TagSuggestionResult]]:
        """Suggest tags for (session_id, context) pairs one after another.

        A failed session maps to an empty list; processing continues.
        """
        results: dict[str, list[TagSuggestionResult]] = {}
        logger.info(f"Starting batch tag suggestion for {len(contexts)} sessions")

        for session_id, context in contexts:
            try:
                results[session_id] = self.suggest(context, existing_tags)
            except TagSuggestionError as e:
                logger.error(f"Failed to generate suggestions for session {session_id}: {e}")
                results[session_id] = []

        succeeded = sum(1 for s in results.values() if s)
        logger.info(f"Batch tag suggestion complete: {succeeded}/{len(contexts)} with suggestions")
        return results

    def validate_api_key(self) -> bool:
        """Check the API key with a minimal request.

        Only an authentication failure counts as invalid; other errors may be
        transient.
        """
        try:
            api_key = self._resolve_api_key()
            self._call_api('Respond with "OK"', api_key)
            return True
        except AuthenticationError:
            return False
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, AuthenticationError):
                return False
            logger.warning(f"API key validation failed with non-auth error: {error}")
            return True

    def estimate(
        self,
        session_count: int,
        avg_tokens_per_session: Optional[int] = None,
    ) -> ScanCostEstimate:
        return estimate_scan_cost(session_count, avg_tokens_per_session)
