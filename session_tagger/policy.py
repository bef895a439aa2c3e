"""Auto-accept policy for AI tag suggestions."""

import logging
from typing import Sequence, TypeVar

from .config import TaggerSettings
from .models import TagSuggestion, TagSuggestionResult
from .store import TagStore

logger = logging.getLogger(__name__)

S = TypeVar("S", TagSuggestion, TagSuggestionResult)


def apply_auto_accept(suggestions: Sequence[S], threshold: float) -> list[S]:
    """Suggestions whose confidence meets or exceeds threshold, in input order."""
    return [s for s in suggestions if s.confidence >= threshold]


class AutoAcceptListener:
    """``complete`` listener that accepts high-confidence suggestions.

    Does nothing while auto-accept is disabled. Settings are read on every
    call, so toggling ``settings.auto_accept_enabled`` takes effect at once.
    """

    def __init__(self, tag_store: TagStore, settings: TaggerSettings):
        self.tag_store = tag_store
        self.settings = settings

    def __call__(self, session_id: str, suggestions: list[TagSuggestion]) -> int:
        if not self.settings.auto_accept_enabled or not suggestions:
            return 0

        accepted = 0
        for suggestion in apply_auto_accept(suggestions, self.settings.auto_accept_threshold):
            if suggestion.id is None:
                continue
            try:
                self.tag_store.accept_suggestion(suggestion.id)
                accepted += 1
            except Exception as e:
                logger.error(
                    f"Failed to auto-accept '{suggestion.tag_name}' for session {session_id}: {e}"
                )

        if accepted:
            logger.info(f"Auto-accepted {accepted} tags for session {session_id}")
        return accepted
