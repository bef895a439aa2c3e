"""AI tag suggestions for coding sessions."""

from .client import TagSuggestionClient
from .config import TaggerSettings
from .context import ContextGatherer, render_context
from .errors import AuthenticationError, TagSuggestionError
from .estimate import estimate_scan_cost
from .policy import AutoAcceptListener, apply_auto_accept
from .scheduler import SuggestionScheduler
from .store import SessionTagDatabase

__version__ = "0.1.0"

__all__ = [
    "TagSuggestionClient",
    "TaggerSettings",
    "ContextGatherer",
    "render_context",
    "TagSuggestionError",
    "AuthenticationError",
    "estimate_scan_cost",
    "AutoAcceptListener",
    "apply_auto_accept",
    "SuggestionScheduler",
    "SessionTagDatabase",
]
