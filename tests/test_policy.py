"""Tests for the auto-accept policy."""

import pytest

from session_tagger.config import TaggerSettings
from session_tagger.models import TagSuggestion, TagSuggestionResult
from session_tagger.policy import AutoAcceptListener, apply_auto_accept


def _result(name, confidence):
    return TagSuggestionResult(name=name, confidence=confidence, category="technology", reasoning="r")


class TestApplyAutoAccept:
    @pytest.fixture
    def suggestions(self):
        return [_result("a", 0.95), _result("b", 0.9), _result("c", 0.5), _result("d", 1.0)]

    def test_threshold_inclusive(self, suggestions):
        assert [s.name for s in apply_auto_accept(suggestions, 0.9)] == ["a", "b", "d"]

    def test_empty(self):
        assert apply_auto_accept([], 0.5) == []

    def test_zero_threshold_accepts_all(self, suggestions):
        assert apply_auto_accept(suggestions, 0) == suggestions

    def test_threshold_above_one_accepts_none(self, suggestions):
        assert apply_auto_accept(suggestions, 1.01) == []


class TestAutoAcceptListener:
    """Tests for accepting persisted suggestions on completion."""

    @pytest.fixture
    def saved(self, store):
        return store.save_suggestions("s1", [_result("python", 0.95), _result("maybe", 0.6)])

    def test_disabled_does_nothing(self, store, saved):
        listener = AutoAcceptListener(store, TaggerSettings(auto_accept_enabled=False))
        assert listener("s1", saved) == 0
        assert store.accepted == []

    def test_accepts_above_threshold(self, store, saved):
        settings = TaggerSettings(auto_accept_enabled=True, auto_accept_threshold=0.9)
        assert AutoAcceptListener(store, settings)("s1", saved) == 1
        assert store.accepted == [saved[0].id]
        assert store.suggestions[saved[0].id].status == "accepted"
        assert store.suggestions[saved[1].id].status == "pending"

    def test_settings_changes_take_effect(self, store, saved):
        settings = TaggerSettings()
        listener = AutoAcceptListener(store, settings)
        settings.auto_accept_enabled = True
        settings.auto_accept_threshold = 0.5
        assert listener("s1", saved) == 2

    def test_store_failure_is_logged_not_raised(self, store):
        missing = TagSuggestion(
            id=999, session_id="s1", tag_name="ghost", confidence=1.0,
            category="technology", reasoning="r",
        )
        listener = AutoAcceptListener(store, TaggerSettings(auto_accept_enabled=True))
        assert listener("s1", [missing]) == 0
