"""Tests for the session-tagger CLI."""

from datetime import datetime

import pytest

from session_tagger.main import main
from session_tagger.models import Session, TagSuggestionResult
from session_tagger.store import SessionTagDatabase


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "sessions.db"
    db = SessionTagDatabase(path)
    db.upsert_session(Session(id="s1", summary="Add login"))
    db.upsert_session(Session(id="s2", summary="Fix CSS"))
    db.save_suggestions("s1", [
        TagSuggestionResult(name="auth", confidence=0.9, category="domain", reasoning="Login work"),
    ])
    db.close()
    return str(path)


class TestCli:
    def test_estimate_explicit_count(self, capsys):
        assert main(["estimate", "--count", "100"]) == 0
        out = capsys.readouterr().out
        assert "120,000" in out
        assert "$0.07" in out

    def test_estimate_pending_sessions(self, db_path, capsys):
        assert main(["--db", db_path, "estimate"]) == 0
        assert "Sessions" in capsys.readouterr().out

    def test_pending(self, db_path, capsys):
        assert main(["--db", db_path, "pending"]) == 0
        out = capsys.readouterr().out
        assert "auth" in out
        assert "s1" in out

    def test_check_key_missing(self, monkeypatch, capsys):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert main(["check-key"]) == 1

    def test_scan_without_key(self, db_path, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert main(["--db", db_path, "scan"]) == 1

    def test_suggest_unknown_session(self, db_path):
        assert main(["--db", db_path, "suggest", "nope"]) == 1

    def test_no_command(self, capsys):
        assert main([]) == 0
        assert "session-tagger" in capsys.readouterr().out

    def test_scan_auto_disabled(self, db_path, api_key, capsys):
        assert main(["--db", db_path, "scan", "--auto"]) == 0
        assert "disabled" in capsys.readouterr().out


def _open(db_path):
    db = SessionTagDatabase(db_path)
    db.initialize()
    return db


class TestReviewCommands:
    """Tests for the review and status subcommands."""

    def test_accept_applies_tag(self, db_path, capsys):
        assert main(["--db", db_path, "review", "--accept", "1"]) == 0
        assert "auth accepted" in capsys.readouterr().out

        db = _open(db_path)
        assert db.get_suggestion(1).status == "accepted"
        assert [t.name for t in db.get_session_tags("s1")] == ["auth"]
        db.close()

    def test_reject(self, db_path):
        assert main(["--db", db_path, "review", "--reject", "1"]) == 0
        db = _open(db_path)
        assert db.get_suggestion(1).status == "rejected"
        assert db.get_session_tags("s1") == []
        db.close()

    def test_already_reviewed(self, db_path, capsys):
        assert main(["--db", db_path, "review", "--dismiss", "1"]) == 0
        assert main(["--db", db_path, "review", "--accept", "1"]) == 1
        assert "already dismissed" in capsys.readouterr().out

    def test_unknown_suggestion(self, db_path):
        assert main(["--db", db_path, "review", "--accept", "99"]) == 1

    def test_accept_all(self, db_path, capsys):
        db = _open(db_path)
        db.save_suggestions("s1", [
            TagSuggestionResult(name="python", confidence=0.6, category="technology", reasoning="r"),
        ])
        db.close()

        assert main(["--db", db_path, "review", "s1", "--accept-all"]) == 0
        assert "Accepted 2" in capsys.readouterr().out
        db = _open(db_path)
        assert [t.name for t in db.get_session_tags("s1")] == ["auth", "python"]
        db.close()

    def test_dismiss_all(self, db_path, capsys):
        assert main(["--db", db_path, "review", "s1", "--dismiss-all"]) == 0
        assert "Dismissed 1" in capsys.readouterr().out
        db = _open(db_path)
        assert db.get_pending_suggestions() == []
        db.close()

    def test_bulk_action_needs_session(self, db_path):
        assert main(["--db", db_path, "review", "--accept-all"]) == 1

    def test_actions_are_exclusive(self, db_path):
        with pytest.raises(SystemExit):
            main(["--db", db_path, "review", "--accept", "1", "--reject", "1"])

    def test_list_session_pending(self, db_path, capsys):
        assert main(["--db", db_path, "review", "s1"]) == 0
        assert "auth" in capsys.readouterr().out
        assert main(["--db", db_path, "review", "s2"]) == 0
        assert "No pending suggestions" in capsys.readouterr().out

    def test_status_counts(self, db_path, capsys):
        db = _open(db_path)
        db.update_scan_status("s1", "completed")
        db.close()

        assert main(["--db", db_path, "status"]) == 0
        out = capsys.readouterr().out
        assert "Scanned" in out
        assert "Pending" in out

    def test_status_skip_older_than(self, db_path, capsys):
        db = _open(db_path)
        db.upsert_session(Session(id="s3", summary="Old", end_time=datetime(2020, 1, 1)))
        db.close()

        assert main(["--db", db_path, "status", "--skip-older-than", "30"]) == 0
        assert "Skipped 1 sessions" in capsys.readouterr().out
        db = _open(db_path)
        assert db.get_scan_status("s3") == "skipped"
        assert db.get_scan_status("s1") == "pending"
        db.close()
