"""Tests for the SQLite session and tag store."""

from datetime import datetime, timedelta

import pytest

from session_tagger.config import TaggerSettings
from session_tagger.context import ContextGatherer
from session_tagger.models import Session, SessionMessage, TagSuggestionResult
from session_tagger.store import AI_TAG_COLOR, SessionTagDatabase


def _result(name, confidence=0.8):
    return TagSuggestionResult(name=name, confidence=confidence, category="technology", reasoning="r")


@pytest.fixture
def db(tmp_path):
    database = SessionTagDatabase(tmp_path / "sessions.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def populated(db):
    now = datetime(2024, 3, 1, 12, 0)
    db.upsert_session(Session(
        id="s-old", file_path="/home/user/api/.sessions/s-old.jsonl",
        summary="Old session", token_count=100,
        start_time=now - timedelta(days=2), end_time=now - timedelta(days=2, minutes=-30),
    ))
    db.upsert_session(Session(id="s-new", summary="New session", end_time=now))
    db.upsert_session(Session(id="agent-1", summary="Sub-agent", end_time=now + timedelta(hours=1)))
    db.replace_messages("s-old", [
        SessionMessage(role="user", content="Add JWT auth"),
        SessionMessage(role="assistant", content="Implemented the middleware", tool_name="Edit"),
    ])
    return db


class TestSessions:
    """Tests for session and message storage."""

    def test_round_trip(self, populated):
        session = populated.get_session("s-old")
        assert session.summary == "Old session"
        assert session.token_count == 100
        assert (session.end_time - session.start_time) == timedelta(minutes=30)

    def test_missing_session(self, db):
        assert db.get_session("nope") is None

    def test_messages_in_order(self, populated):
        messages = populated.get_session_messages("s-old")
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[1].tool_name == "Edit"

    def test_replace_messages(self, populated):
        populated.replace_messages("s-old", [SessionMessage(role="user", content="only")])
        assert [m.content for m in populated.get_session_messages("s-old")] == ["only"]

    def test_feeds_context_gatherer(self, populated):
        context = ContextGatherer(populated).gather_full("s-old")
        assert context.project_name == "api"
        assert context.duration == 30
        assert context.tools_used == ["Edit"]


class TestTags:
    def test_add_tag(self, populated):
        assert populated.add_tag_to_session("s-old", "auth") is True
        assert populated.add_tag_to_session("s-old", "auth") is False
        assert [t.name for t in populated.get_session_tags("s-old")] == ["auth"]
        assert populated.get_tag_names() == ["auth"]


class TestSuggestions:
    """Tests for suggestion persistence and review."""

    def test_save_assigns_ids(self, populated):
        saved = populated.save_suggestions("s-old", [_result("jwt", 0.9), _result("api", 0.6)])
        assert all(s.id is not None for s in saved)
        assert [s.tag_name for s in populated.get_session_suggestions("s-old")] == ["jwt", "api"]
        assert all(s.status == "pending" for s in saved)

    def test_accept_applies_tag(self, populated):
        saved = populated.save_suggestions("s-old", [_result("jwt")])
        populated.accept_suggestion(saved[0].id)

        assert populated.get_suggestion(saved[0].id).status == "accepted"
        assert [t.name for t in populated.get_session_tags("s-old")] == ["jwt"]
        conn = populated._get_connection()
        color = conn.execute("SELECT color FROM tags WHERE name = 'jwt'").fetchone()["color"]
        assert color == AI_TAG_COLOR

    def test_accept_existing_tag(self, populated):
        populated.add_tag_to_session("s-old", "jwt")
        saved = populated.save_suggestions("s-old", [_result("jwt")])
        populated.accept_suggestion(saved[0].id)
        assert len(populated.get_session_tags("s-old")) == 1

    def test_accept_missing(self, db):
        with pytest.raises(KeyError):
            db.accept_suggestion(42)

    def test_reject(self, populated):
        saved = populated.save_suggestions("s-old", [_result("jwt")])
        populated.set_suggestion_status(saved[0].id, "rejected")
        assert populated.get_suggestion(saved[0].id).status == "rejected"
        assert populated.get_pending_suggestions() == []

    def test_reject_cannot_accept(self, populated):
        saved = populated.save_suggestions("s-old", [_result("jwt")])
        with pytest.raises(ValueError):
            populated.set_suggestion_status(saved[0].id, "accepted")

    def test_pending_suggestions_by_confidence(self, populated):
        populated.save_suggestions("s-old", [_result("low", 0.4)])
        populated.save_suggestions("s-new", [_result("high", 0.95)])
        assert [s.tag_name for s in populated.get_pending_suggestions()] == ["high", "low"]
        assert len(populated.get_pending_suggestions(limit=1)) == 1

    def test_accept_all(self, populated):
        saved = populated.save_suggestions("s-old", [_result("jwt"), _result("api"), _result("noise")])
        populated.set_suggestion_status(saved[2].id, "rejected")

        assert populated.accept_all_suggestions("s-old") == 2
        assert [t.name for t in populated.get_session_tags("s-old")] == ["api", "jwt"]
        assert populated.get_suggestion(saved[2].id).status == "rejected"
        assert populated.accept_all_suggestions("s-old") == 0

    def test_dismiss_all(self, populated):
        populated.save_suggestions("s-old", [_result("jwt"), _result("api")])
        populated.save_suggestions("s-new", [_result("docs")])

        assert populated.dismiss_all_suggestions("s-old") == 2
        assert [s.tag_name for s in populated.get_pending_suggestions()] == ["docs"]
        assert {s.status for s in populated.get_session_suggestions("s-old")} == {"dismissed"}
        assert populated.get_session_tags("s-old") == []
        assert populated.dismiss_all_suggestions("s-old") == 0


class TestScanStatus:
    """Tests for scan bookkeeping."""

    def test_pending_order(self, populated):
        """Test user sessions come before agent sessions, newest first."""
        assert populated.get_pending_sessions() == ["s-new", "s-old", "agent-1"]
        assert populated.get_pending_sessions(limit=1) == ["s-new"]

    def test_scanned_sessions_not_pending(self, populated):
        populated.update_scan_status("s-new", "completed")
        populated.update_scan_status("s-old", "failed")
        assert populated.get_pending_sessions() == ["agent-1"]
        assert populated.get_scan_status("s-new") == "completed"

    def test_default_status(self, populated):
        assert populated.get_scan_status("s-old") == "pending"
        assert populated.get_scan_status("nope") is None

    def test_invalid_status(self, populated):
        with pytest.raises(ValueError):
            populated.update_scan_status("s-old", "done")

    def test_reindex_keeps_status(self, populated):
        populated.update_scan_status("s-old", "completed")
        populated.upsert_session(Session(id="s-old", summary="Updated"))
        assert populated.get_scan_status("s-old") == "completed"

    def test_scan_counts(self, populated):
        populated.update_scan_status("s-new", "completed")
        populated.update_scan_status("s-old", "failed")
        assert populated.get_scan_counts() == {"scanned": 1, "pending": 1, "total": 3}

    def test_scan_counts_empty(self, db):
        assert db.get_scan_counts() == {"scanned": 0, "pending": 0, "total": 0}

    def test_skip_old_sessions(self, populated):
        populated.upsert_session(Session(id="s-recent", summary="Recent", end_time=datetime.now()))
        populated.update_scan_status("s-new", "completed")

        assert populated.skip_old_sessions(30) == 2
        assert populated.get_scan_status("s-old") == "skipped"
        assert populated.get_scan_status("agent-1") == "skipped"
        assert populated.get_scan_status("s-new") == "completed"
        assert populated.get_pending_sessions() == ["s-recent"]

    def test_skip_old_sessions_negative_days(self, populated):
        with pytest.raises(ValueError):
            populated.skip_old_sessions(-1)

    def test_sessions_needing_rescan(self, populated):
        populated.update_scan_status("s-old", "completed")
        populated.update_scan_status("s-new", "completed")
        assert populated.get_sessions_needing_rescan() == []

        conn = populated._get_connection()
        conn.execute("UPDATE sessions SET scanned_at = scanned_at - 60 WHERE id = 's-old'")
        populated.upsert_session(Session(id="s-old", summary="Resumed session"))
        assert populated.get_sessions_needing_rescan() == ["s-old"]


class TestSettings:
    def test_settings_round_trip(self, db):
        db.set_setting("auto_accept_enabled", True)
        db.set_setting("auto_accept_threshold", 0.8)
        settings = TaggerSettings.load(db)
        assert settings.auto_accept_enabled is True
        assert settings.auto_accept_threshold == 0.8

    def test_missing_setting(self, db):
        assert db.get_setting("nope") is None
