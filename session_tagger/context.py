"""Session context gathering for AI tag suggestions.

Builds a bounded textual digest of a stored session at one of two depths:

1. Quick: metadata plus the opening and closing user messages
2. Full: metadata, the first user messages and the most decision-heavy
   assistant messages

The digest is rendered into the plain-text block that is sent to the model.
"""

import logging
import re
from pathlib import PurePath
from typing import Optional

from .models import Session, SessionContext, SessionMessage
from .store import SessionSource

logger = logging.getLogger(__name__)

QUICK_MESSAGE_MAX_LENGTH = 300
FULL_MESSAGE_MAX_LENGTH = 500
QUICK_MAX_USER_MESSAGES = 6  # first 3 + last 3
FULL_MAX_USER_MESSAGES = 20
FULL_MAX_ASSISTANT_MESSAGES = 10

ELLIPSIS = "..."

# Directories that hold session files inside a project checkout
SESSION_STORE_DIRS = (".agent-sessions", ".sessions")

# Words that mark an assistant message as a decision, outcome or error
KEY_KEYWORDS = (
    "complete", "finish", "success", "done",
    "error", "fail", "issue", "problem",
    "decide", "choose", "select",
    "create", "build", "implement",
    "important", "note", "critical",
)

USER_SECTION = "User Messages:"
ASSISTANT_SECTION = "Key Assistant Responses:"


def truncate(text: str, max_length: int) -> str:
    """Truncate text to max_length characters, ellipsis included."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(ELLIPSIS)] + ELLIPSIS


def extract_project_name(file_path: Optional[str]) -> Optional[str]:
    if not file_path:
        return None

    parts = [p for p in PurePath(file_path).parts if p not in ("/", "\\")]

    for i, part in enumerate(parts):
        if part in SESSION_STORE_DIRS and i > 0:
            return parts[i - 1]

    # Nearest directory above the file
    for part in reversed(parts[:-1]):
        if part and part not in (".", ".."):
            return part
    return None


def calculate_duration(session: Session) -> int:
    """Session length in whole minutes, 0 when either bound is unknown."""
    if not session.start_time or not session.end_time:
        return 0
    seconds = (session.end_time - session.start_time).total_seconds()
    return round(seconds / 60)


def extract_tools(messages: list[SessionMessage]) -> list[str]:
    return sorted({m.tool_name for m in messages if m.tool_name})


def score_message(content: str) -> int:
    content_lower = content.lower()
    return sum(1 for k in KEY_KEYWORDS if k in content_lower)


def select_user_messages(
    messages: list[SessionMessage],
    max_count: int,
    max_length: int,
    include_first_last: bool = False,
) -> list[str]:
    user_messages = [m for m in messages if m.role == "user"]

    if include_first_last and len(user_messages) > max_count:
        half = max_count // 2
        selected = user_messages[:half] + user_messages[-half:]
    else:
        selected = user_messages[:max_count]

    return [truncate(m.content, max_length) for m in selected]


def select_key_assistant_messages(
    messages: list[SessionMessage],
    max_count: int,
    max_length: int,
) -> list[str]:
    """Top assistant messages by keyword score; ties keep session order."""
    assistant_messages = [m for m in messages if m.role == "assistant"]
    ranked = sorted(assistant_messages, key=lambda m: score_message(m.content), reverse=True)
    return [truncate(m.content, max_length) for m in ranked[:max_count]]


class ContextGatherer:
    """Reads sessions from a session source and builds SessionContext digests."""

    def __init__(self, source: SessionSource):
        self.source = source

    def gather_quick(self, session_id: str) -> Optional[SessionContext]:
        """Gather minimal context: metadata and first/last user messages.

        Returns None when the session is missing or cannot be read.
        """
        return self._gather(session_id, full=False)

    def gather_full(self, session_id: str) -> Optional[SessionContext]:
        """Gather full context: metadata, user messages and key assistant responses.

        Returns None when the session is missing or cannot be read.
        """
        return self._gather(session_id, full=True)

    def _gather(self, session_id: str, full: bool) -> Optional[SessionContext]:
        mode = "full" if full else "quick"
        try:
            session = self.source.get_session(session_id)
            if not session:
                logger.debug(f"No session {session_id} for {mode} context")
                return None

            messages = self.source.get_session_messages(session_id)
            tags = self.source.get_session_tags(session_id)

            if full:
                user_messages = select_user_messages(
                    messages, FULL_MAX_USER_MESSAGES, FULL_MESSAGE_MAX_LENGTH
                )
                assistant_messages = select_key_assistant_messages(
                    messages, FULL_MAX_ASSISTANT_MESSAGES, FULL_MESSAGE_MAX_LENGTH
                )
            else:
                user_messages = select_user_messages(
                    messages,
                    QUICK_MAX_USER_MESSAGES,
                    QUICK_MESSAGE_MAX_LENGTH,
                    include_first_last=True,
                )
                assistant_messages = []

            return SessionContext(
                session_id=session_id,
                project_name=extract_project_name(session.file_path),
                summary=session.summary,
                user_messages=user_messages,
                assistant_messages=assistant_messages,
                tools_used=extract_tools(messages),
                total_tokens=session.token_count or 0,
                duration=calculate_duration(session),
                outcome=session.outcome,
                existing_tags=[t.name for t in tags],
            )
        except Exception as e:
            logger.error(f"Failed to gather {mode} context for session {session_id}: {e}")
            return None


def render_context(context: SessionContext) -> str:
    """Render a context into the text block used as model input.

    Sections whose source value is empty are left out entirely.
    """
    sections: list[str] = []

    if context.project_name:
        sections.append(f"Project: {context.project_name}")

    if context.summary:
        sections.append(f"Summary: {context.summary}")

    metadata_parts = []
    if context.duration > 0:
        metadata_parts.append(f"{context.duration} minutes")
    if context.total_tokens > 0:
        metadata_parts.append(f"{context.total_tokens} tokens")
    if context.outcome:
        metadata_parts.append(f"outcome: {context.outcome}")
    if metadata_parts:
        sections.append(f"Metadata: {', '.join(metadata_parts)}")

    if context.tools_used:
        sections.append(f"Tools: {', '.join(context.tools_used)}")

    if context.user_messages:
        sections.append(f"\n{USER_SECTION}")
        for i, msg in enumerate(context.user_messages, 1):
            sections.append(f"{i}. {msg}")

    if context.assistant_messages:
        sections.append(f"\n{ASSISTANT_SECTION}")
        for i, msg in enumerate(context.assistant_messages, 1):
            sections.append(f"{i}. {msg}")

    if context.existing_tags:
        sections.append(f"\nExisting Tags: {', '.join(context.existing_tags)}")

    return "\n".join(sections)


_NUMBERED_LINE = re.compile(r"^(\d+)\. (.*)$")

_HEADER_FIELDS = (
    ("Project: ", "project"),
    ("Summary: ", "summary"),
    ("Metadata: ", "metadata"),
    ("Tools: ", "tools"),
)


def parse_rendered_context(text: str) -> dict:
    """Re-extract the sections of a rendered context.

    Returns a dict holding only the sections present in the text, keyed by
    "project", "summary", "metadata", "tools", "user_messages",
    "assistant_messages" and "existing_tags". Multi-line message bodies are
    folded back onto their numbered entry.
    """
    result: dict = {}
    current_list: Optional[list[str]] = None

    for line in text.split("\n"):
        if line == USER_SECTION:
            current_list = result.setdefault("user_messages", [])
            continue
        if line == ASSISTANT_SECTION:
            current_list = result.setdefault("assistant_messages", [])
            continue
        if line.startswith("Existing Tags: "):
            result["existing_tags"] = line[len("Existing Tags: "):].split(", ")
            current_list = None
            continue

        if current_list is None:
            for prefix, key in _HEADER_FIELDS:
                if line.startswith(prefix):
                    value = line[len(prefix):]
                    result[key] = value.split(", ") if key in ("metadata", "tools") else value
                    break
            continue

        match = _NUMBERED_LINE.match(line)
        if match and int(match.group(1)) == len(current_list) + 1:
            current_list.append(match.group(2))
        elif current_list:
            current_list[-1] += "\n" + line

    # Section separators are blank lines folded onto the last entry
    for key in ("user_messages", "assistant_messages"):
        if result.get(key):
            result[key][-1] = result[key][-1].rstrip("\n")

    return result
