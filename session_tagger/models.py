"""Data models for sessions, contexts and tag suggestions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Closed set of categories a suggestion may carry
SUGGESTION_CATEGORIES = (
    "task_type",
    "technology",
    "domain",
    "complexity",
    "outcome",
    "pattern",
)

# Priority tiers, higher rank is drained first
PRIORITY_RANKS = {
    "high": 3,
    "medium": 2,
    "low": 1,
}

SCAN_STATUSES = ("pending", "queued", "scanning", "completed", "failed", "skipped")
SUGGESTION_STATUSES = ("pending", "accepted", "rejected", "dismissed")


@dataclass
class Session:
    """A stored coding session as supplied by the session store."""

    id: str
    file_path: Optional[str] = None
    summary: Optional[str] = None
    token_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    outcome: Optional[str] = None


@dataclass
class SessionMessage:
    """A single message within a session."""

    role: str  # "user", "assistant", "tool"
    content: str = ""
    tool_name: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass
class Tag:
    id: int
    name: str


@dataclass
class SessionContext:
    """Bounded digest of a session prepared for the model.

    Rebuilt on every scan, never persisted.
    """

    session_id: str
    project_name: Optional[str] = None
    summary: Optional[str] = None
    user_messages: list[str] = field(default_factory=list)
    assistant_messages: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    total_tokens: int = 0
    duration: int = 0  # minutes
    outcome: Optional[str] = None
    existing_tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TagSuggestionResult:
    """One validated tag proposed by the model."""

    name: str
    confidence: float
    category: str
    reasoning: str


@dataclass
class TagSuggestion:
    """A suggestion after it has been persisted by the tag store."""

    id: int
    session_id: str
    tag_name: str
    confidence: float
    category: Optional[str]
    reasoning: Optional[str]
    status: str = "pending"


@dataclass(frozen=True)
class ScanCostEstimate:
    total_sessions: int
    estimated_tokens: int
    estimated_cost: float
    estimated_time_minutes: int


@dataclass
class ScanProgress:
    """Snapshot of scheduler progress for display."""

    current: int
    total: int
    percentage: int
    estimated_time_ms: int
    current_session_id: Optional[str] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_max: Optional[int] = None


@dataclass
class SchedulerStatus:
    is_running: bool
    is_paused: bool
    total_sessions: int
    scanned_sessions: int
    pending_sessions: int
    current_session_id: Optional[str]
    estimated_time_remaining: Optional[int]
    last_error: Optional[str]
    breaker_open: bool = False
