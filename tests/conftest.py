"""Shared fakes for tag suggestion tests."""

import json
import threading
from types import SimpleNamespace

import pytest

from session_tagger.models import Tag, TagSuggestion


class InMemoryStore:
    """SessionSource and TagStore backed by dicts."""

    def __init__(self):
        self.sessions = {}
        self.messages = {}
        self.tags = {}
        self.vocabulary = []
        self.suggestions = {}
        self.scan_status = {}
        self.accepted = []
        self._next_id = 1
        self._lock = threading.Lock()

    def add(self, session, messages=None, tags=None):
        self.sessions[session.id] = session
        self.messages[session.id] = list(messages or [])
        self.tags[session.id] = [Tag(id=i, name=n) for i, n in enumerate(tags or [], 1)]

    def get_session(self, session_id):
        return self.sessions.get(session_id)

    def get_session_messages(self, session_id):
        return self.messages.get(session_id, [])

    def get_session_tags(self, session_id):
        return self.tags.get(session_id, [])

    def get_tag_names(self):
        return list(self.vocabulary)

    def save_suggestions(self, session_id, results):
        saved = []
        with self._lock:
            for r in results:
                suggestion = TagSuggestion(
                    id=self._next_id,
                    session_id=session_id,
                    tag_name=r.name,
                    confidence=r.confidence,
                    category=r.category,
                    reasoning=r.reasoning,
                )
                self.suggestions[suggestion.id] = suggestion
                saved.append(suggestion)
                self._next_id += 1
        return saved

    def accept_suggestion(self, suggestion_id):
        if suggestion_id not in self.suggestions:
            raise KeyError(suggestion_id)
        self.suggestions[suggestion_id].status = "accepted"
        self.accepted.append(suggestion_id)

    def get_pending_sessions(self, limit=None):
        pending = [s for s in self.sessions if self.scan_status.get(s, "pending") == "pending"]
        return pending if limit is None else pending[:limit]

    def update_scan_status(self, session_id, status):
        self.scan_status[session_id] = status


def suggestion_payload(*names, confidence=0.8, category="technology"):
    return json.dumps({
        "suggestions": [
            {
                "tagName": name,
                "confidence": confidence,
                "category": category,
                "reasoning": f"Session is about {name}",
            }
            for name in names
        ]
    })


class FakeMessages:
    """Stands in for ``Anthropic().messages``; replays scripted outcomes."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else suggestion_payload("python")
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=outcome)])


class FakeAnthropic:
    def __init__(self, *outcomes):
        self.messages = FakeMessages(outcomes)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    return "sk-test"
